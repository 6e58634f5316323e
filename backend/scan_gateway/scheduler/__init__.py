from scan_gateway.scheduler.scheduler_service import scheduler_service

__all__ = ["scheduler_service"]
