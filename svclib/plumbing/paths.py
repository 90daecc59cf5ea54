"""
Filesystem locations and defaults used by service helpers.

Each value may be overridden by an environment variable of the same name prefixed with `SVCLIB_`,
so that packaging scripts and tests can redirect writes away from the live system.
"""

import os


UNIT_DIR = os.getenv("SVCLIB_UNIT_DIR", "/etc/systemd/system")
"""
Directory where systemd unit files are installed.
"""

TEMPLATE_DIR = os.getenv("SVCLIB_TEMPLATE_DIR", os.path.join("..", "conf"))
"""
Directory holding an application's configuration templates, relative to the packaging script.
"""

CHECKSUM_STORE = os.getenv("SVCLIB_CHECKSUM_STORE", "/var/lib/svclib/checksums.json")
"""
JSON file mapping managed configuration paths to the checksum of their last managed write.
"""

BACKUP_DIR = os.getenv("SVCLIB_BACKUP_DIR", "/var/backups/svclib")
"""
Directory receiving copies of configuration files that were edited by hand before an overwrite.
"""

LOG_DIR = os.getenv("SVCLIB_LOG_DIR", "/var/log")
"""
Parent directory of per-service log directories, used to derive a default log file path.
"""

JOURNAL = "systemd"
"""
Log source value meaning "read the journal for this unit" instead of a file.
"""

TIMEOUT = 300
"""
Default number of seconds to wait for a readiness line.
"""

LENGTH = 20
"""
Default number of log lines to print when an action fails or times out.
"""
