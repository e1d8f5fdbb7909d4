class QueueError(Exception):
    """Base exception for evaluation queue errors."""
    pass

class ConfigurationError(QueueError):
    pass

class QueueStoppedError(QueueError):
    def __init__(self):
        super().__init__("Evaluation queue is stopped")

class JobNotFoundError(QueueError):
    def __init__(self, job_id):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id

class InvalidJobStateError(QueueError):
    def __init__(self, current_status, target_status):
        super().__init__(f"Cannot transition from {current_status} to {target_status}")
        self.current_status = current_status
        self.target_status = target_status

class EvaluatorError(QueueError):
    """Raised by evaluator clients for network or provider failures."""
    pass

class ProcessingTimeoutError(EvaluatorError):
    def __init__(self, timeout: float):
        super().__init__("Processing timeout")
        self.timeout = timeout
