import abc
import typing
from datetime import datetime
from typing import Any, Dict, List, Optional

if typing.TYPE_CHECKING:
    from seqflow.scheduler import Job


class SeqflowBackend(abc.ABC):
    """
    A Backend records the run history (executions and their jobs) of a Scheduler.

    This base backend records nothing. See `db.py` for a backend persisting
    the history in a database.
    """

    def load(self) -> None:
        """
        Load the backend for use.
        """
        pass

    def record_execution(
        self,
        execution_id: str,
        workflow_name: str,
        args: List[str],
        inputs: Dict[str, Any],
        now: Optional[datetime] = None,
    ) -> None:
        """
        Records the start of an Execution.

        Parameters
        ----------
        execution_id : str
            The id of the execution.
        workflow_name : str
            Fullname of the workflow being run.
        args : List[str]
            Arguments used on the command line to start the Execution.
        inputs : Dict[str, Any]
            Validated workflow inputs.
        """
        pass

    def record_execution_end(
        self, execution_id: str, status: str, now: Optional[datetime] = None
    ) -> None:
        """
        Records the final status of an Execution.
        """
        pass

    def record_job_start(self, job: "Job", now: Optional[datetime] = None) -> None:
        """
        Records the start of an attempt of a Job.
        """
        pass

    def record_job_end(
        self,
        job: "Job",
        now: Optional[datetime] = None,
        status: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        """
        Records the end of a Job with its final status.
        """
        pass
