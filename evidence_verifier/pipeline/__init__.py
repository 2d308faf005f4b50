"""Pipeline wiring between the API-side producer and background workers.

Provides:
- VerificationProducer: enqueues a job per evidence creation or re-verify request
- WorkerRuntime: connects store/queue, serves metrics and runs a worker
"""

from evidence_verifier.pipeline.verification_producer import VerificationProducer
from evidence_verifier.pipeline.worker_runtime import (
    WorkerRuntime,
    build_queue,
    build_store,
)

__all__ = ["VerificationProducer", "WorkerRuntime", "build_queue", "build_store"]
