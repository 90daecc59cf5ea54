"""
Service management helpers for application packaging scripts.

- `svclib.plumbing`: single actions against systemd, files and logs
- `svclib.tasks`: complete steps for installing, removing and controlling a service
- `svclib.scripts`: console entrypoints wrapping the tasks
"""
