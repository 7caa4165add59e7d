"""Database models and the relational store behind the resolver."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Self

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    select,
    update,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import (
    AdvisoryRecord,
    Dependency,
    DependencyVersion,
    ProjectDependency,
    QuarantineRecord,
    SupplyChainCheck,
    SupplyChainChecks,
    SupplyChainStatus,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Sequence

    from sqlalchemy.engine import Engine


class Base(DeclarativeBase):
    """Base class for all database models."""


class DBDependency(Base):
    """Database model for packages, interned by name."""

    __tablename__ = "dependencies"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False, unique=True)
    latest_version = Column(String, nullable=True)
    latest_release_date = Column(DateTime(timezone=True), nullable=True)


class DBDependencyVersion(Base):
    """Database model for released versions of a package."""

    __tablename__ = "dependency_versions"

    id = Column(Integer, primary_key=True)
    dependency_id = Column(Integer, ForeignKey("dependencies.id"), nullable=False)
    version = Column(String, nullable=False)
    published_at = Column(DateTime(timezone=True), nullable=True)
    registry_integrity_status = Column(String, nullable=True)
    install_scripts_status = Column(String, nullable=True)
    entropy_analysis_status = Column(String, nullable=True)

    __table_args__ = (UniqueConstraint("dependency_id", "version", name="dependency_version_unique_constraint"),)


class DBEdge(Base):
    """Database model for parent to child dependency edges."""

    __tablename__ = "dependency_version_edges"

    id = Column(Integer, primary_key=True)
    parent_version_id = Column(Integer, ForeignKey("dependency_versions.id"), nullable=False)
    child_version_id = Column(Integer, ForeignKey("dependency_versions.id"), nullable=False)

    __table_args__ = (UniqueConstraint("parent_version_id", "child_version_id", name="edge_unique_constraint"),)


class EdgeResolution(Base):
    """Marks a version whose complete edge set has been recorded, even if it is empty."""

    __tablename__ = "edge_resolutions"

    id = Column(Integer, primary_key=True)
    version_id = Column(Integer, ForeignKey("dependency_versions.id"), nullable=False, unique=True)
    resolved_at = Column(DateTime(timezone=True), nullable=False)


class DBVulnerability(Base):
    """Database model for advisories affecting a package."""

    __tablename__ = "dependency_vulnerabilities"

    id = Column(Integer, primary_key=True)
    dependency_id = Column(Integer, ForeignKey("dependencies.id"), nullable=False)
    osv_id = Column(String, nullable=False)
    severity = Column(String, nullable=True)
    summary = Column(String, nullable=True)
    aliases = Column(JSON, nullable=True)
    affected_versions = Column(JSON, nullable=True)
    fixed_versions = Column(JSON, nullable=True)
    published_at = Column(DateTime(timezone=True), nullable=True)
    modified_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (UniqueConstraint("dependency_id", "osv_id", name="vulnerability_unique_constraint"),)


class DBProject(Base):
    """Database model for projects."""

    __tablename__ = "projects"

    id = Column(Integer, primary_key=True)
    organization_id = Column(Integer, nullable=False)


class ProjectTeam(Base):
    """Database model for the teams attached to a project."""

    __tablename__ = "project_teams"

    id = Column(Integer, primary_key=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False)
    team_id = Column(Integer, nullable=False)

    __table_args__ = (UniqueConstraint("project_id", "team_id", name="project_team_unique_constraint"),)


class DBProjectDependency(Base):
    """Database model for a dependency used by a project."""

    __tablename__ = "project_dependencies"

    id = Column(Integer, primary_key=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False)
    name = Column(String, nullable=False)
    version = Column(String, nullable=True)
    dependency_id = Column(Integer, ForeignKey("dependencies.id"), nullable=True)
    dependency_version_id = Column(Integer, ForeignKey("dependency_versions.id"), nullable=True)
    is_direct = Column(Boolean, nullable=False, default=True)


class BannedVersion(Base):
    """Database model for organization-wide banned versions."""

    __tablename__ = "banned_versions"

    id = Column(Integer, primary_key=True)
    organization_id = Column(Integer, nullable=False)
    dependency_id = Column(Integer, ForeignKey("dependencies.id"), nullable=False)
    banned_version = Column(String, nullable=False)

    __table_args__ = (
        UniqueConstraint("organization_id", "dependency_id", "banned_version", name="banned_version_unique_constraint"),
    )


class TeamBannedVersion(Base):
    """Database model for team-scoped banned versions."""

    __tablename__ = "team_banned_versions"

    id = Column(Integer, primary_key=True)
    team_id = Column(Integer, nullable=False)
    dependency_id = Column(Integer, ForeignKey("dependencies.id"), nullable=False)
    banned_version = Column(String, nullable=False)

    __table_args__ = (
        UniqueConstraint("team_id", "dependency_id", "banned_version", name="team_banned_version_unique_constraint"),
    )


class WatchlistEntry(Base):
    """Database model for an organization's quarantine state of a package."""

    __tablename__ = "organization_watchlist"

    id = Column(Integer, primary_key=True)
    organization_id = Column(Integer, nullable=False)
    dependency_id = Column(Integer, ForeignKey("dependencies.id"), nullable=False)
    quarantine_until = Column(DateTime(timezone=True), nullable=True)
    is_current_version_quarantined = Column(Boolean, nullable=False, default=False)
    latest_allowed_version = Column(String, nullable=True)

    __table_args__ = (UniqueConstraint("organization_id", "dependency_id", name="watchlist_unique_constraint"),)


_CHECK_COLUMNS = {
    SupplyChainCheck.REGISTRY_INTEGRITY: DBDependencyVersion.registry_integrity_status,
    SupplyChainCheck.INSTALL_SCRIPTS: DBDependencyVersion.install_scripts_status,
    SupplyChainCheck.ENTROPY_ANALYSIS: DBDependencyVersion.entropy_analysis_status,
}


def _chunks(items: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


def _insert(session: Session, model: type[Base]) -> Any:  # noqa: ANN401
    """Return a dialect-specific INSERT that supports ON CONFLICT clauses."""
    if session.get_bind().dialect.name == "postgresql":
        return postgresql.insert(model)
    return sqlite.insert(model)


def _to_version(row: DBDependencyVersion, name: str) -> DependencyVersion:
    return DependencyVersion(
        id=row.id,  # type: ignore[arg-type]
        dependency_id=row.dependency_id,  # type: ignore[arg-type]
        version=row.version,  # type: ignore[arg-type]
        name=name,
        published_at=row.published_at,  # type: ignore[arg-type]
        checks=SupplyChainChecks(
            registry_integrity=SupplyChainStatus.parse(row.registry_integrity_status),  # type: ignore[arg-type]
            install_scripts=SupplyChainStatus.parse(row.install_scripts_status),  # type: ignore[arg-type]
            entropy_analysis=SupplyChainStatus.parse(row.entropy_analysis_status),  # type: ignore[arg-type]
        ),
    )


def _to_advisory(row: DBVulnerability) -> AdvisoryRecord:
    return AdvisoryRecord(
        osv_id=row.osv_id,  # type: ignore[arg-type]
        severity=row.severity,  # type: ignore[arg-type]
        summary=row.summary,  # type: ignore[arg-type]
        aliases=tuple(row.aliases or ()),
        affected_versions=row.affected_versions,
        fixed_versions=tuple(row.fixed_versions or ()),
        published_at=row.published_at,  # type: ignore[arg-type]
        modified_at=row.modified_at,  # type: ignore[arg-type]
    )


def _naive_utc(when: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if when is None or when.tzinfo is None:
        return when
    return when.astimezone(timezone.utc).replace(tzinfo=None)


def _fingerprint(record: AdvisoryRecord) -> tuple[Any, ...]:
    """Return the fields of an advisory that an upsert can change."""
    return (
        record.severity,
        record.summary,
        tuple(record.aliases),
        record.affected_versions,
        tuple(record.fixed_versions),
        _naive_utc(record.modified_at),
    )


class DBStore:
    """Database-backed store of the dependency graph, the vulnerability ledger and exclusion policies.

    Every write that creates versions or edges is an insert that is ignored on
    conflict, so concurrent writers converge instead of needing a lock.
    """

    def __init__(self, db: str | Path = ":memory:", timeout: float = 10.0) -> None:
        """Initialize the store from a path, a SQLAlchemy URL, or ``:memory:``.

        `timeout` bounds, in seconds, how long connecting or waiting on a lock may take.
        """
        if str(db) in (":memory:", "sqlite:///:memory:", "sqlite://"):
            db = "sqlite://"
        elif isinstance(db, str) and "://" not in db:
            db = Path(db)
        elif isinstance(db, str) and db.startswith("sqlite:///"):
            db = Path(db.removeprefix("sqlite:///"))
        if isinstance(db, Path):
            db.parent.mkdir(parents=True, exist_ok=True)
            db = f"sqlite:///{db.absolute()!s}"
        self.db: str = db
        self.timeout = timeout
        self._engine: Engine | None = None
        self._sessionmaker: sessionmaker[Session] | None = None
        self._entries: int = 0

    def open(self) -> None:
        """Open the database connection and create any missing tables."""
        if self.db == "sqlite://":
            # a single shared connection, otherwise every connection sees its own empty database
            engine = create_engine(
                self.db,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False, "timeout": self.timeout},
            )
        elif self.db.startswith("sqlite:"):
            engine = create_engine(self.db, connect_args={"check_same_thread": False, "timeout": self.timeout})
        else:
            engine = create_engine(
                self.db,
                pool_pre_ping=True,
                pool_timeout=self.timeout,
                connect_args={"connect_timeout": max(1, int(self.timeout))},
            )
        Base.metadata.create_all(engine)
        self._engine = engine
        self._sessionmaker = sessionmaker(bind=engine, expire_on_commit=False)

    def close(self) -> None:
        """Close the database connection."""
        if self._engine is not None:
            self._engine.dispose()
        self._engine = None
        self._sessionmaker = None

    def __enter__(self) -> Self:
        """Enter context manager."""
        if self._entries == 0:
            self.open()
        self._entries += 1
        return self

    def __exit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: object) -> None:
        """Exit context manager."""
        self._entries -= 1
        if self._entries == 0:
            self.close()

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Yield a short-lived session whose transaction commits on success."""
        if self._sessionmaker is None:
            msg = "The store is not open"
            raise RuntimeError(msg)
        with self._sessionmaker.begin() as session:
            yield session

    # Packages and versions

    def ensure_dependency(self, name: str) -> int:
        """Return the id of the package `name`, creating it if needed."""
        with self.session() as session:
            session.execute(_insert(session, DBDependency).values(name=name).on_conflict_do_nothing())
            return session.execute(select(DBDependency.id).where(DBDependency.name == name)).scalar_one()  # type: ignore[no-any-return]

    def ensure_version(self, dependency_id: int, version: str, published_at: datetime | None = None) -> int:
        """Return the id of `version` of a package, creating it if needed."""
        with self.session() as session:
            session.execute(
                _insert(session, DBDependencyVersion)
                .values(dependency_id=dependency_id, version=version, published_at=published_at)
                .on_conflict_do_nothing()
            )
            return session.execute(  # type: ignore[no-any-return]
                select(DBDependencyVersion.id).where(
                    DBDependencyVersion.dependency_id == dependency_id,
                    DBDependencyVersion.version == version,
                )
            ).scalar_one()

    def get_dependency(self, dependency_id: int) -> Dependency | None:
        """Get a package by id."""
        with self.session() as session:
            row = session.get(DBDependency, dependency_id)
            if row is None:
                return None
            return Dependency(
                id=row.id,  # type: ignore[arg-type]
                name=row.name,  # type: ignore[arg-type]
                latest_version=row.latest_version,  # type: ignore[arg-type]
                latest_release_date=row.latest_release_date,  # type: ignore[arg-type]
            )

    def all_dependencies(self) -> list[Dependency]:
        """Get every known package."""
        with self.session() as session:
            return [
                Dependency(
                    id=row.id,  # type: ignore[arg-type]
                    name=row.name,  # type: ignore[arg-type]
                    latest_version=row.latest_version,  # type: ignore[arg-type]
                    latest_release_date=row.latest_release_date,  # type: ignore[arg-type]
                )
                for row in session.scalars(select(DBDependency).order_by(DBDependency.id))
            ]

    def update_latest_release(self, dependency_id: int, version: str, released_at: datetime | None) -> None:
        """Record the newest known release of a package."""
        with self.session() as session:
            session.execute(
                update(DBDependency)
                .where(DBDependency.id == dependency_id)
                .values(latest_version=version, latest_release_date=released_at)
            )

    def get_version(self, version_id: int) -> DependencyVersion | None:
        """Get one version, including its package name."""
        with self.session() as session:
            row = session.execute(
                select(DBDependencyVersion, DBDependency.name)
                .join(DBDependency, DBDependency.id == DBDependencyVersion.dependency_id)
                .where(DBDependencyVersion.id == version_id)
            ).first()
            return None if row is None else _to_version(row[0], row[1])

    def versions_by_ids(self, version_ids: Sequence[int], batch_size: int = 100) -> list[DependencyVersion]:
        """Get many versions with one query per `batch_size` identifiers."""
        versions: list[DependencyVersion] = []
        for chunk in _chunks(list(dict.fromkeys(version_ids)), batch_size):
            with self.session() as session:
                rows = session.execute(
                    select(DBDependencyVersion, DBDependency.name)
                    .join(DBDependency, DBDependency.id == DBDependencyVersion.dependency_id)
                    .where(DBDependencyVersion.id.in_(chunk))
                    .order_by(DBDependencyVersion.id)
                ).all()
                versions.extend(_to_version(v, name) for v, name in rows)
        return versions

    def versions_for_dependency(self, dependency_id: int) -> list[DependencyVersion]:
        """Get every known version of a package, in insertion order."""
        with self.session() as session:
            rows = session.execute(
                select(DBDependencyVersion, DBDependency.name)
                .join(DBDependency, DBDependency.id == DBDependencyVersion.dependency_id)
                .where(DBDependencyVersion.dependency_id == dependency_id)
                .order_by(DBDependencyVersion.id)
            ).all()
            return [_to_version(v, name) for v, name in rows]

    def set_check_status(
        self,
        version_id: int,
        check: SupplyChainCheck | str,
        status: SupplyChainStatus | str,
    ) -> None:
        """Overwrite one supply-chain check status of a version."""
        column = _CHECK_COLUMNS[SupplyChainCheck(check)]
        with self.session() as session:
            session.execute(
                update(DBDependencyVersion)
                .where(DBDependencyVersion.id == version_id)
                .values({column: SupplyChainStatus.parse(status).value})
            )

    # Edges

    def add_edges(self, parent_version_id: int, child_version_ids: Iterable[int]) -> None:
        """Record parent to child edges; existing edges are left untouched."""
        values = [
            {"parent_version_id": parent_version_id, "child_version_id": child_id}
            for child_id in dict.fromkeys(child_version_ids)
        ]
        if not values:
            return
        with self.session() as session:
            session.execute(_insert(session, DBEdge).values(values).on_conflict_do_nothing())

    def child_version_ids(self, parent_version_id: int) -> list[int]:
        """Get the recorded children of a version."""
        with self.session() as session:
            return list(
                session.scalars(
                    select(DBEdge.child_version_id)
                    .where(DBEdge.parent_version_id == parent_version_id)
                    .order_by(DBEdge.id)
                )
            )

    def edges_resolved(self, version_id: int) -> bool:
        """Check whether the complete edge set of a version has been recorded."""
        with self.session() as session:
            return (
                session.execute(select(EdgeResolution.id).where(EdgeResolution.version_id == version_id).limit(1)).first()
                is not None
            )

    def set_edges_resolved(self, version_id: int) -> None:
        """Mark the edge set of a version as complete."""
        with self.session() as session:
            session.execute(
                _insert(session, EdgeResolution)
                .values(version_id=version_id, resolved_at=datetime.now(timezone.utc))
                .on_conflict_do_nothing()
            )

    # Vulnerability ledger

    def advisories_for(self, dependency_ids: Sequence[int], batch_size: int = 100) -> dict[int, list[AdvisoryRecord]]:
        """Get the advisories of many packages with one query per `batch_size` packages."""
        advisories: dict[int, list[AdvisoryRecord]] = {dep_id: [] for dep_id in dependency_ids}
        for chunk in _chunks(list(advisories), batch_size):
            with self.session() as session:
                for row in session.scalars(
                    select(DBVulnerability)
                    .where(DBVulnerability.dependency_id.in_(chunk))
                    .order_by(DBVulnerability.id)
                ):
                    advisories[row.dependency_id].append(_to_advisory(row))  # type: ignore[index]
        return advisories

    def upsert_advisories(self, dependency_id: int, advisories: Iterable[AdvisoryRecord]) -> int:
        """Insert new advisories and refresh existing ones.

        Returns:
            the number of advisories that were new or whose content changed

        """
        records = {a.osv_id: a for a in advisories}
        if not records:
            return 0
        with self.session() as session:
            existing = {
                row.osv_id: _to_advisory(row)
                for row in session.scalars(
                    select(DBVulnerability).where(
                        DBVulnerability.dependency_id == dependency_id,
                        DBVulnerability.osv_id.in_(list(records)),
                    )
                )
            }
            changed = sum(
                1
                for osv_id, record in records.items()
                if osv_id not in existing or _fingerprint(existing[osv_id]) != _fingerprint(record)
            )
            stmt = _insert(session, DBVulnerability).values(
                [
                    {
                        "dependency_id": dependency_id,
                        "osv_id": record.osv_id,
                        "severity": record.severity,
                        "summary": record.summary,
                        "aliases": list(record.aliases),
                        "affected_versions": record.affected_versions,
                        "fixed_versions": list(record.fixed_versions),
                        "published_at": record.published_at,
                        "modified_at": record.modified_at,
                    }
                    for record in records.values()
                ]
            )
            session.execute(
                stmt.on_conflict_do_update(
                    index_elements=["dependency_id", "osv_id"],
                    set_={
                        "severity": stmt.excluded.severity,
                        "summary": stmt.excluded.summary,
                        "aliases": stmt.excluded.aliases,
                        "affected_versions": stmt.excluded.affected_versions,
                        "fixed_versions": stmt.excluded.fixed_versions,
                        "modified_at": stmt.excluded.modified_at,
                    },
                )
            )
            return changed

    # Projects

    def add_project(self, project_id: int, organization_id: int) -> None:
        """Register a project of an organization."""
        with self.session() as session:
            session.execute(
                _insert(session, DBProject).values(id=project_id, organization_id=organization_id).on_conflict_do_nothing()
            )

    def add_project_team(self, project_id: int, team_id: int) -> None:
        """Attach a team to a project."""
        with self.session() as session:
            session.execute(
                _insert(session, ProjectTeam).values(project_id=project_id, team_id=team_id).on_conflict_do_nothing()
            )

    def add_project_dependency(
        self,
        project_id: int,
        name: str,
        version: str | None = None,
        dependency_version_id: int | None = None,
        *,
        is_direct: bool = True,
    ) -> int:
        """Record that a project uses a package, optionally at a resolved version."""
        dependency_id = self.ensure_dependency(name)
        with self.session() as session:
            row = DBProjectDependency(
                project_id=project_id,
                name=name,
                version=version,
                dependency_id=dependency_id,
                dependency_version_id=dependency_version_id,
                is_direct=is_direct,
            )
            session.add(row)
            session.flush()
            return row.id  # type: ignore[return-value]

    def get_project_dependency(self, project_id: int, project_dependency_id: int) -> ProjectDependency | None:
        """Get a project dependency, provided it belongs to `project_id`."""
        with self.session() as session:
            row = session.execute(
                select(DBProjectDependency, DBProject.organization_id)
                .join(DBProject, DBProject.id == DBProjectDependency.project_id)
                .where(
                    DBProjectDependency.id == project_dependency_id,
                    DBProjectDependency.project_id == project_id,
                )
            ).first()
            return None if row is None else self._to_project_dependency(row[0], row[1])

    def project_dependencies_using(self, dependency_id: int) -> list[ProjectDependency]:
        """Get every project dependency on a package, across all projects."""
        with self.session() as session:
            rows = session.execute(
                select(DBProjectDependency, DBProject.organization_id)
                .join(DBProject, DBProject.id == DBProjectDependency.project_id)
                .where(DBProjectDependency.dependency_id == dependency_id)
                .order_by(DBProjectDependency.id)
            ).all()
            return [self._to_project_dependency(pd, org) for pd, org in rows]

    def direct_dependency_ids(self) -> set[int]:
        """Get the packages that at least one project depends on directly."""
        with self.session() as session:
            return {
                dep_id
                for dep_id in session.scalars(
                    select(DBProjectDependency.dependency_id).where(DBProjectDependency.is_direct.is_(True)).distinct()
                )
                if dep_id is not None
            }

    @staticmethod
    def _to_project_dependency(row: DBProjectDependency, organization_id: int) -> ProjectDependency:
        return ProjectDependency(
            id=row.id,  # type: ignore[arg-type]
            project_id=row.project_id,  # type: ignore[arg-type]
            organization_id=organization_id,
            name=row.name,  # type: ignore[arg-type]
            version=row.version,  # type: ignore[arg-type]
            dependency_id=row.dependency_id,  # type: ignore[arg-type]
            dependency_version_id=row.dependency_version_id,  # type: ignore[arg-type]
            is_direct=bool(row.is_direct),
        )

    # Exclusion policies

    def add_banned_version(self, organization_id: int, dependency_id: int, version: str) -> None:
        """Ban a version of a package organization-wide."""
        with self.session() as session:
            session.execute(
                _insert(session, BannedVersion)
                .values(organization_id=organization_id, dependency_id=dependency_id, banned_version=version)
                .on_conflict_do_nothing()
            )

    def add_team_banned_version(self, team_id: int, dependency_id: int, version: str) -> None:
        """Ban a version of a package for one team."""
        with self.session() as session:
            session.execute(
                _insert(session, TeamBannedVersion)
                .values(team_id=team_id, dependency_id=dependency_id, banned_version=version)
                .on_conflict_do_nothing()
            )

    def banned_versions(self, organization_id: int, project_id: int, dependency_id: int) -> set[str]:
        """Get the versions banned by the organization or by any team attached to the project."""
        with self.session() as session:
            banned = set(
                session.scalars(
                    select(BannedVersion.banned_version).where(
                        BannedVersion.organization_id == organization_id,
                        BannedVersion.dependency_id == dependency_id,
                    )
                )
            )
            team_ids = list(session.scalars(select(ProjectTeam.team_id).where(ProjectTeam.project_id == project_id)))
            if team_ids:
                banned.update(
                    session.scalars(
                        select(TeamBannedVersion.banned_version).where(
                            TeamBannedVersion.team_id.in_(team_ids),
                            TeamBannedVersion.dependency_id == dependency_id,
                        )
                    )
                )
            return banned

    def set_quarantine(self, organization_id: int, dependency_id: int, quarantine: QuarantineRecord) -> None:
        """Create or replace an organization's quarantine state for a package."""
        with self.session() as session:
            stmt = _insert(session, WatchlistEntry).values(
                organization_id=organization_id,
                dependency_id=dependency_id,
                quarantine_until=quarantine.quarantine_until,
                is_current_version_quarantined=quarantine.is_current_version_quarantined,
                latest_allowed_version=quarantine.latest_allowed_version,
            )
            session.execute(
                stmt.on_conflict_do_update(
                    index_elements=["organization_id", "dependency_id"],
                    set_={
                        "quarantine_until": stmt.excluded.quarantine_until,
                        "is_current_version_quarantined": stmt.excluded.is_current_version_quarantined,
                        "latest_allowed_version": stmt.excluded.latest_allowed_version,
                    },
                )
            )

    def quarantine_for(self, organization_id: int, dependency_id: int) -> QuarantineRecord | None:
        """Get an organization's quarantine state for a package, if it watches it."""
        with self.session() as session:
            row = session.scalars(
                select(WatchlistEntry).where(
                    WatchlistEntry.organization_id == organization_id,
                    WatchlistEntry.dependency_id == dependency_id,
                )
            ).first()
            if row is None:
                return None
            return QuarantineRecord(
                quarantine_until=row.quarantine_until,  # type: ignore[arg-type]
                is_current_version_quarantined=bool(row.is_current_version_quarantined),
                latest_allowed_version=row.latest_allowed_version,  # type: ignore[arg-type]
            )
