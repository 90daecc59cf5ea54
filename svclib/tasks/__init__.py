"""
Higher-level methods to manage services.

Each public function in this module should:

- perform a complete task, as needed by a script or packaging step
- avoid non-idempotent calls unless required by a prior state change
- create and manage handles for any resources needed by plumbing
"""
