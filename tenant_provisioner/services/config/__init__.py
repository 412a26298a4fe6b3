"""Configuration package (Facade).

Re-exports the public config types so callers import from one stable path:

    from tenant_provisioner.services.config import SqsConfig

Each config is a frozen dataclass with a `from_env()` constructor. Missing or
malformed environment variables raise `ValueError` naming the variable, which
the entry point treats as a fatal startup failure.
"""

from tenant_provisioner.services.config.collection_config import CollectionConfig
from tenant_provisioner.services.config.database_config import DatabaseConfig
from tenant_provisioner.services.config.sqs_config import SqsConfig
from tenant_provisioner.services.config.worker_config import WorkerConfig

__all__ = ["CollectionConfig", "DatabaseConfig", "SqsConfig", "WorkerConfig"]
