"""Chat module: context management and streaming turns.

- Message log + session index in MongoDB (motor async)
- Sliding-window context with a running LLM summary of older messages
- Cancellable token streaming with exactly-once persistence of the turn
"""
