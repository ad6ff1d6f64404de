import json
import typing
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, cast

from sqlalchemy import Column as BaseColumn
from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, create_engine
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

from seqflow.backends.base import SeqflowBackend
from seqflow.config import Section, create_config_section
from seqflow.logging import logger as _logger
from seqflow.utils import json_dumps

if typing.TYPE_CHECKING:
    from seqflow.scheduler import Job as BaseJob

DEFAULT_DB_URI = "sqlite:///seqflow.db"

Base: Any = declarative_base()
Engine = Any


class SeqflowDatabaseError(Exception):
    pass


class Column(BaseColumn):
    """
    Use non-null Columns by default.
    """

    inherit_cache = True

    def __init__(self, *args, **kwargs):
        kwargs["nullable"] = kwargs.get("nullable", False)
        super().__init__(*args, **kwargs)


class JSON(TypeDecorator):
    """
    A string column holding normalized JSON (sorted keys, compact separators).
    """

    cache_ok = True
    impl = Text

    def process_bind_param(self, value: Any, dialect):
        return json_dumps(value)

    def process_result_value(self, value: Any, dialect):
        return json.loads(value) if value is not None else None


class Execution(Base):
    __tablename__ = "execution"

    id = Column(String, primary_key=True)
    workflow = Column(String, index=True)
    args = Column(JSON)
    inputs = Column(JSON)
    status = Column(String(20))
    start_time = Column(DateTime, index=True)
    end_time = Column(DateTime, nullable=True)

    jobs = relationship("Job", back_populates="execution", order_by="Job.start_time")

    def __repr__(self) -> str:
        return "Execution(id='{id}', workflow='{workflow}', status={status})".format(
            id=self.id[:8],
            workflow=self.workflow,
            status=self.status,
        )

    @property
    def duration(self) -> Optional[timedelta]:
        if not self.end_time:
            return None
        return self.end_time - self.start_time


class Job(Base):
    __tablename__ = "job"

    id = Column(String, primary_key=True)
    execution_id = Column(String, ForeignKey("execution.id"), index=True)
    call_name = Column(String)
    task_name = Column(String, index=True)
    status = Column(String(20))
    attempts = Column(Integer, default=0)
    inputs = Column(JSON)
    resources = Column(JSON)
    outputs = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    workdir = Column(String, nullable=True)
    start_time = Column(DateTime)
    end_time = Column(DateTime, nullable=True)

    execution = relationship("Execution", back_populates="jobs")

    def __repr__(self) -> str:
        return "Job(id='{id}', call_name='{call_name}', status={status})".format(
            id=self.id[:8],
            call_name=self.call_name,
            status=self.status,
        )

    @property
    def duration(self) -> Optional[timedelta]:
        """
        Returns duration of the Job or None if Job end_time is not recorded.
        """
        if not self.end_time:
            return None
        return self.end_time - self.start_time


class SeqflowBackendDb(SeqflowBackend):
    """
    A database-based Backend for recording run history.

    This backend makes use of SQLAlchemy. The default database is a sqlite file.
    """

    def __init__(
        self,
        db_uri: Optional[str] = None,
        config: Optional[Section] = None,
        logger: Optional[Any] = None,
    ):
        if not config:
            config = create_config_section()
        self.logger = logger or _logger

        self.db_uri: str = cast(str, db_uri or config.get("db_uri", DEFAULT_DB_URI))
        self.connect_args: Dict[str, Any] = {}
        self.engine_args: Dict[str, Any] = {}
        if self.db_uri.startswith("sqlite:"):
            self.connect_args["check_same_thread"] = False
            if self.db_uri in ("sqlite://", "sqlite:///:memory:"):
                # Share one in-memory database across connections.
                self.engine_args["poolclass"] = StaticPool

        self.engine: Optional[Engine] = None
        self.session: Optional[Session] = None

    def create_engine(self) -> Engine:
        """
        Initializes a database connection.
        """
        self.engine = create_engine(
            self.db_uri, connect_args=self.connect_args, future=True, **self.engine_args
        )
        self.Session = sessionmaker(bind=self.engine)
        self.session = self.Session()
        return self.engine

    def load(self) -> None:
        """
        Load backend database, creating its tables if needed.
        """
        self.create_engine()
        assert self.engine
        Base.metadata.create_all(self.engine)

    def _get_session(self) -> Session:
        if not self.session:
            raise SeqflowDatabaseError("Database backend is not loaded.")
        return self.session

    def record_execution(
        self,
        execution_id: str,
        workflow_name: str,
        args: List[str],
        inputs: Dict[str, Any],
        now: Optional[datetime] = None,
    ) -> None:
        session = self._get_session()
        execution = Execution(
            id=execution_id,
            workflow=workflow_name,
            args=args,
            inputs=inputs,
            status="RUNNING",
            start_time=now or datetime.now(),
        )
        session.add(execution)
        session.commit()

    def record_execution_end(
        self, execution_id: str, status: str, now: Optional[datetime] = None
    ) -> None:
        session = self._get_session()
        execution = session.get(Execution, execution_id)
        if not execution:
            raise SeqflowDatabaseError(f"Unknown execution {execution_id}")
        execution.status = status
        execution.end_time = now or datetime.now()
        session.commit()

    def record_job_start(self, job: "BaseJob", now: Optional[datetime] = None) -> None:
        """
        Records the start of an attempt of a Job.

        The Job row is created on the first attempt and updated on retries.
        """
        session = self._get_session()
        if not now:
            now = datetime.now()

        db_job = session.get(Job, job.id)
        if not db_job:
            db_job = Job(
                id=job.id,
                execution_id=job.execution.id,
                call_name=job.call.name,
                task_name=job.call.task.fullname,
                inputs=job.eval_args or {},
                resources=job.resources,
                start_time=now,
            )
            session.add(db_job)

        db_job.status = "RUNNING"
        db_job.attempts = job.attempt
        db_job.workdir = job.workdir
        session.commit()

    def record_job_end(
        self,
        job: "BaseJob",
        now: Optional[datetime] = None,
        status: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        """
        Records the end of a Job.

        Create the job if needed (e.g. for skipped jobs), in which case the job
        will be recorded with `start_time==end_time`.
        """
        session = self._get_session()
        if not now:
            now = datetime.now()

        db_job = session.get(Job, job.id)
        if not db_job:
            db_job = Job(
                id=job.id,
                execution_id=job.execution.id,
                call_name=job.call.name,
                task_name=job.call.task.fullname,
                inputs=job.eval_args or {},
                resources=job.resources,
                start_time=now,
                attempts=job.attempt,
            )
            session.add(db_job)

        db_job.status = status or job.status
        db_job.end_time = now
        db_job.outputs = job.result
        db_job.error = error
        session.commit()

    def get_executions(self, since: Optional[datetime] = None) -> List[Execution]:
        """
        Returns executions, newest first.
        """
        query = self._get_session().query(Execution)
        if since:
            query = query.filter(Execution.start_time >= since)
        return query.order_by(Execution.start_time.desc()).all()

    def find_execution(self, id_prefix: str) -> Optional[Execution]:
        """
        Returns the execution whose id starts with `id_prefix`.
        """
        executions = (
            self._get_session()
            .query(Execution)
            .filter(Execution.id.like(id_prefix + "%"))
            .all()
        )
        if len(executions) > 1:
            raise SeqflowDatabaseError(f"Execution id prefix {id_prefix} is ambiguous.")
        return executions[0] if executions else None
