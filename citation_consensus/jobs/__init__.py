"""Durable job orchestration.

Modules:
  store   PipelineStore implementations (in-memory, JSON file)
  queue   job creation and the queue-item state machine
  worker  bounded-batch worker that drains the queue
"""
