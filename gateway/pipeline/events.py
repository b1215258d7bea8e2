"""Event names recorded on the ExecutionContext during a pipeline run."""

CACHE_HIT = "cache.hit"
CACHE_MISS = "cache.miss"
CACHE_STORE = "cache.store"
ROUTE_SELECTED = "router.route_selected"
BACKEND_CALLED = "backend.called"
VALIDATION_COMPLETE = "validator.complete"
STAGE_START = "stage.start"
STAGE_END = "stage.end"
STAGE_ERROR = "stage.error"
