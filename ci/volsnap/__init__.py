"""
volsnap - persist a CI working directory's block device across job runs.

At job start the latest snapshot for the branch (or the repository's
default branch) is restored onto a fresh EBS volume and mounted on the
target path. At job end the volume is unmounted, snapshotted and deleted.

Architecture:
    main phase                           post phase
    ----------                           ----------
    SnapshotLocator                      StateStore (read)
          |                                    |
    VolumeProvisioner --+                FilesystemPreparer (teardown)
          |             | cleanup              |
    AttachmentManager   | on error       SnapshotCreator
          |             |                      |
    FilesystemPreparer -+                detach -> snapshot -> delete
          |
    StateStore (write)

Invariants:
    - The bridging record is the only state shared between phases
    - Every resource carries a TTL tag for the external reaper
    - All cloud waits are bounded
"""

from ._version import __version__

__all__ = ["__version__"]
