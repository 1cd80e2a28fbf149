"""
acredita_batch -- Background jobs and bulk operations for the accreditation kernel.

Provides the database-backed job queue that implements the kernel's
``JobDispatcher``, the polling ``JobWorker`` that renders credentials and
print batches, the ``BulkApprovalRunner`` control loop, and the
``AccreditationOrchestrator`` composition root.

Architecture:
    acredita_batch/ is a top-level package.  Nothing in acredita_kernel/
    imports from it, except ``create_tables`` registering the job table.
"""
