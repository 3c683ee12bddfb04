"""Shared constants across the application."""

# Queue and task names
SYNC_QUEUE = "sync"
RUN_PRODUCT_SYNC_TASK = "sync_worker.tasks.sync_products.run_product_sync"
PROCESS_BATCH_TASK = "sync_worker.tasks.sync_products.process_product_batch"
SCHEDULED_SYNC_TASK = "sync_worker.tasks.sync_products.sync_products_from_ecommerce"
SWEEP_STALE_TASK = "sync_worker.tasks.maintenance.sweep_stale_syncs"
PURGE_DELETED_TASK = "sync_worker.tasks.maintenance.purge_deleted_items"
SCHEDULED_JOBS_TASK = "sync_worker.tasks.sync_jobs.run_scheduled_jobs"

# Batch retry policy
BATCH_MAX_RETRIES = 3
BATCH_RETRY_DELAY_SECONDS = 30

# Default limits
DEFAULT_PAGE_LIMIT = 20
MAX_PAGE_LIMIT = 100
DEFAULT_EXECUTIONS_LIMIT = 10
MAX_EXECUTIONS_LIMIT = 100

# Cache keys
STATS_CACHE_PREFIX = "catalog:stats"
