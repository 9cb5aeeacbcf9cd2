import asyncio
from typing import Dict, Optional
from core.logger import logger

class TaskManager:
    """Process-wide registry of timer tasks keyed by session id. Every TaskManager() is the same instance."""
    _instance = None
    _tasks: Dict[str, asyncio.Task] = {}

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(TaskManager, cls).__new__(cls)
        return cls._instance

    def register_task(self, session_id: str, task: asyncio.Task):
        """Register the timer task for a session, cancelling any existing one."""
        self.cancel_task(session_id)
        self._tasks[session_id] = task
        logger.debug("Registered timer task", session_id=session_id)
        
        # Remove from dict when done
        task.add_done_callback(lambda t: self._cleanup_task(session_id, t))

    def cancel_task(self, session_id: str):
        """Cancel the running task for a session if it exists.

        A task cancelling its own registration is only deregistered, so the
        code after the call (e.g. a completing save) still runs.
        """
        task = self._tasks.pop(session_id, None)
        if task is None:
            return
        if not task.done() and task is not asyncio.current_task():
            task.cancel()
            logger.debug("Cancelled timer task", session_id=session_id)

    def get_task(self, session_id: str) -> Optional[asyncio.Task]:
        return self._tasks.get(session_id)

    def is_running(self, session_id: str) -> bool:
        task = self._tasks.get(session_id)
        return task is not None and not task.done()

    def _cleanup_task(self, session_id: str, task: asyncio.Task):
        """Remove task from dict if it's still the registered one."""
        if self._tasks.get(session_id) is task:
            del self._tasks[session_id]
            
task_manager = TaskManager()
