import threading
from datetime import datetime, timedelta, timezone
from unittest import TestCase
from unittest.mock import Mock, patch

from sqlalchemy.exc import OperationalError

from safe_depends.cache import InMemoryCacheStore, ResultCache, cache_key
from safe_depends.config import ResolverConfig
from safe_depends.db import DBStore
from safe_depends.errors import (
    InvalidSeverityError,
    ProjectDependencyNotFoundError,
    RegistryUnavailableError,
    ResolutionCancelled,
    ResolutionUnavailableError,
)
from safe_depends.models import AdvisoryRecord, QuarantineRecord, ResolutionResult, SupplyChainCheck, SupplyChainStatus
from safe_depends.registry import InMemoryRegistry
from safe_depends.resolver import (
    CURRENT_IS_SAFE,
    NO_SAFE_VERSION,
    NO_VERSIONS,
    VERSION_NOT_RESOLVED,
    LatestSafeVersionResolver,
)
from safe_depends.severity import Severity
from safe_depends.versions import parse_version

ORG = 1
PROJECT = 7
TEAM = 70
NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


def _versions(*versions: str) -> list[dict]:
    return [{"versions": list(versions)}]


def _from(introduced: str) -> list[dict]:
    return [{"ranges": [{"type": "SEMVER", "events": [{"introduced": introduced}]}]}]


class ResolverTestCase(TestCase):
    def setUp(self) -> None:
        self.store = DBStore()
        self.store.open()
        self.store.add_project(PROJECT, ORG)
        self.store.add_project_team(PROJECT, TEAM)
        self.registry = InMemoryRegistry()
        self.cache = ResultCache(InMemoryCacheStore())
        self.resolver = LatestSafeVersionResolver(self.store, self.registry, cache=self.cache, clock=lambda: NOW)

    def tearDown(self) -> None:
        self.store.close()

    def publish(self, package: str, version: str, dependencies: dict[str, str] | None = None) -> int:
        self.registry.publish(package, version, dependencies)
        return self.store.ensure_version(self.store.ensure_dependency(package), version)

    def advisory(self, package: str, osv_id: str, severity: str, affected: list[dict] | None) -> None:
        self.store.upsert_advisories(
            self.store.ensure_dependency(package),
            [AdvisoryRecord(osv_id, severity, affected_versions=affected)],
        )

    def use(self, package: str, version_id: int | None) -> int:
        """Make the project depend on `package` at `version_id`; returns the project dependency id."""
        return self.store.add_project_dependency(PROJECT, package, dependency_version_id=version_id)

    def resolve(self, project_dependency_id: int, severity: str = "high", **kwargs: object) -> ResolutionResult:
        return self.resolver.resolve(ORG, PROJECT, project_dependency_id, severity, **kwargs)  # type: ignore[arg-type]


class TestResolution(ResolverTestCase):
    def setUp(self) -> None:
        super().setUp()
        # P@3.0.0 is itself critical, P@2.5.0 pulls in a high-severity C@1.0.0,
        # and P@2.0.0 depends on the clean C@0.9.0
        current = self.publish("P", "1.0.0")
        self.publish("P", "2.0.0", {"C": "0.9.0"})
        self.publish("P", "2.5.0", {"C": "1.0.0"})
        self.publish("P", "3.0.0")
        self.publish("C", "0.9.0")
        self.publish("C", "1.0.0")
        self.advisory("P", "GHSA-p", "CRITICAL", _versions("3.0.0"))
        self.advisory("C", "GHSA-c", "HIGH", _from("1.0.0"))
        self.pd = self.use("P", current)

    def test_skips_own_and_inherited_vulnerabilities(self) -> None:
        result = self.resolve(self.pd, "high")
        assert result.safe_version == "2.0.0"
        assert result.safe_version_id == self.store.ensure_version(self.store.ensure_dependency("P"), "2.0.0")
        assert result.versions_checked == 3  # noqa: PLR2004
        assert not result.is_current
        assert result.severity == "high"
        assert result.message is None

    def test_critical_floor_tolerates_high_findings(self) -> None:
        result = self.resolve(self.pd, "critical")
        assert result.safe_version == "2.5.0"
        assert result.versions_checked == 2  # noqa: PLR2004
        assert result.severity == "critical"

    def test_raising_the_floor_never_lowers_the_answer(self) -> None:
        self.advisory("P", "GHSA-low", "LOW", _versions("2.0.0"))
        self.advisory("P", "GHSA-medium", "MODERATE", _versions("1.0.0"))
        answers = [self.resolve(self.pd, str(floor), skip_cache=True).safe_version for floor in Severity]
        assert answers == [None, "2.0.0", "2.0.0", "2.5.0"]
        ranked = [parse_version(a) if a is not None else None for a in answers]
        for lower, upper in zip(ranked, ranked[1:]):
            assert lower is None or (upper is not None and upper >= lower)

    def test_repeated_resolutions_agree(self) -> None:
        first = self.resolve(self.pd, skip_cache=True)
        second = self.resolve(self.pd, skip_cache=True)
        assert first == second

    def test_current_version_can_be_the_answer(self) -> None:
        current = self.store.ensure_version(self.store.ensure_dependency("P"), "2.0.0")
        pd = self.use("P", current)
        result = self.resolve(pd)
        assert result.safe_version == "2.0.0"
        assert result.is_current
        assert result.message == CURRENT_IS_SAFE

    def test_only_direct_dependencies_are_checked(self) -> None:
        self.registry.publish("C", "0.9.0", {"D": "1.0.0"})
        self.publish("D", "1.0.0")
        self.advisory("D", "GHSA-d", "CRITICAL", None)
        assert self.resolve(self.pd).safe_version == "2.0.0"

    def test_edges_are_persisted(self) -> None:
        self.resolve(self.pd)
        p_dep = self.store.ensure_dependency("P")
        for version in ("2.0.0", "2.5.0"):
            assert self.store.edges_resolved(self.store.ensure_version(p_dep, version))
        # never visited
        assert not self.store.edges_resolved(self.store.ensure_version(p_dep, "1.0.0"))

    def test_banned_version_is_never_returned(self) -> None:
        p_dep = self.store.ensure_dependency("P")
        self.store.add_banned_version(ORG, p_dep, "2.0.0")
        result = self.resolve(self.pd, "critical")
        assert result.safe_version == "2.5.0"
        result = self.resolve(self.pd, "high")
        assert result.safe_version == "1.0.0"
        assert result.is_current
        assert result.versions_checked == 4  # noqa: PLR2004

    def test_team_bans_apply_and_can_be_ignored(self) -> None:
        p_dep = self.store.ensure_dependency("P")
        self.store.add_team_banned_version(TEAM, p_dep, "2.0.0")
        assert self.resolve(self.pd).safe_version == "1.0.0"
        assert self.resolve(self.pd, exclude_banned=False).safe_version == "2.0.0"

    def test_ban_wins_even_when_clean(self) -> None:
        p_dep = self.store.ensure_dependency("P")
        self.store.add_banned_version(ORG, p_dep, "3.0.0")
        # 3.0.0 is clean now, so only the ban rejects it
        self.store.upsert_advisories(p_dep, [AdvisoryRecord("GHSA-p", "CRITICAL", affected_versions=_versions("0.0.1"))])
        assert self.resolve(self.pd, "critical").safe_version == "2.5.0"
        assert self.resolve(self.pd, "critical", exclude_banned=False, skip_cache=True).safe_version == "3.0.0"


class TestExclusionPolicies(ResolverTestCase):
    def setUp(self) -> None:
        super().setUp()
        current = self.publish("lib", "1.0.0")
        self.publish("lib", "2.0.0")
        self.publish("lib", "3.0.0")
        self.publish("lib", "4.0.0-beta.1")
        self.dep = self.store.ensure_dependency("lib")
        self.pd = self.use("lib", current)

    def test_pre_releases_are_never_candidates(self) -> None:
        result = self.resolve(self.pd)
        assert result.safe_version == "3.0.0"
        assert result.versions_checked == 1

    def test_active_quarantine(self) -> None:
        self.store.set_quarantine(ORG, self.dep, QuarantineRecord(NOW + timedelta(days=2), True, "2.0.0"))
        result = self.resolve(self.pd)
        assert result.safe_version == "2.0.0"
        assert result.versions_checked == 2  # noqa: PLR2004

    def test_expired_quarantine(self) -> None:
        self.store.set_quarantine(ORG, self.dep, QuarantineRecord(NOW - timedelta(days=2), True, "2.0.0"))
        assert self.resolve(self.pd).safe_version == "3.0.0"

    def test_quarantine_of_another_organization(self) -> None:
        self.store.set_quarantine(ORG + 1, self.dep, QuarantineRecord(NOW + timedelta(days=2), True, "1.0.0"))
        assert self.resolve(self.pd).safe_version == "3.0.0"

    def test_failed_supply_chain_check(self) -> None:
        newest = self.store.ensure_version(self.dep, "3.0.0")
        self.store.set_check_status(newest, SupplyChainCheck.REGISTRY_INTEGRITY, SupplyChainStatus.FAIL)
        self.store.set_check_status(
            self.store.ensure_version(self.dep, "2.0.0"), SupplyChainCheck.ENTROPY_ANALYSIS, SupplyChainStatus.WARNING
        )
        assert self.resolve(self.pd).safe_version == "2.0.0"


class TestSearchWindow(ResolverTestCase):
    def setUp(self) -> None:
        super().setUp()
        current = None
        for major in range(1, 31):
            version_id = self.publish("big", f"{major}.0.0")
            if major == 1:
                current = version_id
        # everything from 6.0.0 up is vulnerable, so the only safe releases are the oldest five
        self.advisory("big", "GHSA-big", "HIGH", _from("6.0.0"))
        self.pd = self.use("big", current)

    def test_gives_up_after_the_newest_candidates(self) -> None:
        result = self.resolve(self.pd)
        assert result.safe_version is None
        assert result.safe_version_id is None
        assert result.versions_checked == 25  # noqa: PLR2004
        assert result.message == NO_SAFE_VERSION

    def test_window_is_configurable(self) -> None:
        resolver = LatestSafeVersionResolver(self.store, self.registry, config=ResolverConfig(max_candidates=26))
        result = resolver.resolve(ORG, PROJECT, self.pd, "high")
        assert result.safe_version == "5.0.0"
        assert result.versions_checked == 26  # noqa: PLR2004

    def test_lower_severity_findings_do_not_count(self) -> None:
        assert self.resolve(self.pd, "critical").safe_version == "30.0.0"


class TestEdgeCases(ResolverTestCase):
    def test_unresolved_installed_version(self) -> None:
        pd = self.use("ghost", None)
        result = self.resolve(pd)
        assert result.safe_version is None
        assert result.versions_checked == 0
        assert result.message == VERSION_NOT_RESOLVED
        assert self.cache.get(cache_key(ORG, PROJECT, pd, "high", True)) == result

    def test_no_stable_versions(self) -> None:
        pd = self.use("beta-only", self.publish("beta-only", "0.1.0-alpha.1"))
        result = self.resolve(pd)
        assert result.safe_version is None
        assert result.versions_checked == 0
        assert result.message == NO_SAFE_VERSION

    def test_no_versions_at_all(self) -> None:
        pd = self.use("lib", self.publish("lib", "1.0.0"))
        with patch.object(self.store, "versions_for_dependency", return_value=[]):
            result = self.resolve(pd)
        assert result.safe_version is None
        assert result.versions_checked == 0
        assert result.message == NO_VERSIONS

    def test_unknown_project_dependency(self) -> None:
        with self.assertRaises(ProjectDependencyNotFoundError):
            self.resolve(12345)
        # a project dependency is only reachable through its own project
        pd = self.use("lib", self.publish("lib", "1.0.0"))
        with self.assertRaises(ProjectDependencyNotFoundError):
            self.resolver.resolve(ORG, PROJECT + 1, pd)

    def test_invalid_severity_touches_nothing(self) -> None:
        store = Mock(wraps=self.store)
        resolver = LatestSafeVersionResolver(store, self.registry, cache=self.cache)
        with self.assertRaises(InvalidSeverityError):
            resolver.resolve(ORG, PROJECT, 1, "moderate")
        assert store.method_calls == []

    def test_version_list_unavailable(self) -> None:
        pd = self.use("lib", self.publish("lib", "1.0.0"))
        with (
            patch.object(
                self.store,
                "versions_for_dependency",
                side_effect=OperationalError("SELECT", {}, Exception("connection refused")),
            ),
            self.assertRaises(ResolutionUnavailableError),
        ):
            self.resolve(pd)
        # failures are not cached
        assert self.cache.get(cache_key(ORG, PROJECT, pd, "high", True)) is None

    def test_ledger_outage_counts_as_no_findings(self) -> None:
        pd = self.use("lib", self.publish("lib", "1.0.0"))
        self.publish("lib", "2.0.0")
        self.advisory("lib", "GHSA-lib", "CRITICAL", _versions("2.0.0"))
        with patch.object(
            self.store,
            "advisories_for",
            side_effect=OperationalError("SELECT", {}, Exception("connection refused")),
        ):
            assert self.resolve(pd).safe_version == "2.0.0"

    def test_registry_outage_does_not_block_resolution(self) -> None:
        pd = self.use("app", self.publish("app", "1.0.0", {"dep": "^1.0.0"}))
        newest = self.publish("app", "2.0.0", {"dep": "^1.0.0"})
        registry = Mock()
        registry.get_manifest.side_effect = RegistryUnavailableError("registry is down")
        resolver = LatestSafeVersionResolver(self.store, registry)

        result = resolver.resolve(ORG, PROJECT, pd)
        assert result.safe_version == "2.0.0"
        # the outage is not remembered as "no dependencies"
        assert not self.store.edges_resolved(newest)

    def test_cancellation(self) -> None:
        pd = self.use("lib", self.publish("lib", "1.0.0"))
        cancel = threading.Event()
        cancel.set()
        with self.assertRaises(ResolutionCancelled):
            self.resolve(pd, cancel=cancel)
        assert self.cache.get(cache_key(ORG, PROJECT, pd, "high", True)) is None

    def test_cancellation_between_candidates(self) -> None:
        pd = self.use("lib", self.publish("lib", "1.0.0"))
        self.publish("lib", "2.0.0", {"dep": "1.0.0"})
        self.publish("dep", "1.0.0")
        self.advisory("dep", "GHSA-dep", "HIGH", None)
        cancel = threading.Event()

        children_of = self.resolver.graph.children_of

        def _cancel_after(version_id: int) -> list[int]:
            cancel.set()
            return children_of(version_id)

        with (
            patch.object(self.resolver.graph, "children_of", side_effect=_cancel_after),
            self.assertRaises(ResolutionCancelled),
        ):
            self.resolve(pd, cancel=cancel)


class TestCaching(ResolverTestCase):
    def setUp(self) -> None:
        super().setUp()
        current = self.publish("lib", "1.0.0")
        self.publish("lib", "2.0.0", {"dep": "^1.0.0"})
        self.publish("dep", "1.0.0")
        self.dep = self.store.ensure_dependency("lib")
        self.pd = self.use("lib", current)

    def test_cached_answer_needs_no_store_or_registry(self) -> None:
        first = self.resolve(self.pd)
        assert first.safe_version == "2.0.0"

        store = Mock(wraps=self.store)
        registry = Mock(wraps=self.registry)
        resolver = LatestSafeVersionResolver(store, registry, cache=self.cache)
        assert resolver.resolve(ORG, PROJECT, self.pd, "HIGH") == first
        assert store.method_calls == []
        assert registry.method_calls == []

    def test_cache_is_keyed_by_every_parameter(self) -> None:
        self.resolve(self.pd, "high")
        assert self.cache.get(cache_key(ORG, PROJECT, self.pd, "high", True)) is not None
        assert self.cache.get(cache_key(ORG, PROJECT, self.pd, "low", True)) is None
        assert self.cache.get(cache_key(ORG, PROJECT, self.pd, "high", False)) is None

    def test_skip_cache_recomputes_and_writes_back(self) -> None:
        key = cache_key(ORG, PROJECT, self.pd, "high", True)
        stale = self.resolve(self.pd)
        self.store.add_banned_version(ORG, self.dep, "2.0.0")
        # still served from the cache
        assert self.resolve(self.pd) == stale

        fresh = self.resolve(self.pd, skip_cache=True)
        assert fresh.safe_version == "1.0.0"
        assert self.cache.get(key) == fresh

    def test_invalidation_after_a_ban(self) -> None:
        assert self.resolve(self.pd).safe_version == "2.0.0"
        self.store.add_banned_version(ORG, self.dep, "2.0.0")
        assert self.cache.invalidate_dependency(self.store, self.dep) == 1
        assert self.resolve(self.pd).safe_version == "1.0.0"

    def test_invalidation_after_a_new_advisory(self) -> None:
        assert self.resolve(self.pd).safe_version == "2.0.0"
        self.advisory("dep", "GHSA-dep", "CRITICAL", _versions("1.0.0"))
        self.cache.invalidate(ORG, PROJECT, self.pd)
        assert self.resolve(self.pd).safe_version == "1.0.0"

    def test_broken_cache_is_bypassed(self) -> None:
        broken = Mock()
        broken.get.side_effect = ConnectionRefusedError("connection refused")
        broken.set_with_ttl.side_effect = ConnectionRefusedError("connection refused")
        resolver = LatestSafeVersionResolver(self.store, self.registry, cache=ResultCache(broken))
        with self.assertLogs("safe_depends.cache", level="WARNING"):
            assert resolver.resolve(ORG, PROJECT, self.pd).safe_version == "2.0.0"

    def test_non_object_cache_entries_are_recomputed(self) -> None:
        key = cache_key(ORG, PROJECT, self.pd, "high", True)
        for payload in (b"null", b"[]", b'"2.0.0"'):
            self.cache.store.set_with_ttl(key, payload, 60)
            with self.assertLogs("safe_depends.cache", level="WARNING"):
                result = self.resolve(self.pd)
            assert result.safe_version == "2.0.0"
            assert self.cache.get(key) == result

    def test_unexpected_cache_write_failure_is_ignored(self) -> None:
        store = Mock()
        store.get.return_value = None
        store.set_with_ttl.side_effect = RuntimeError("pool closed")
        resolver = LatestSafeVersionResolver(self.store, self.registry, cache=ResultCache(store))
        with self.assertLogs("safe_depends.cache", level="WARNING") as logs:
            assert resolver.resolve(ORG, PROJECT, self.pd).safe_version == "2.0.0"
        assert any("pool closed" in line for line in logs.output)
