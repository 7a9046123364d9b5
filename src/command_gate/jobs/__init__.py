"""Job lifecycle: durable store, approval queue, and command execution."""
