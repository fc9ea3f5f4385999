# modman/resolution/resolver.py
from __future__ import annotations
import logging
from collections.abc import Iterable

from modman.mods.identity import normalizeId
from modman.mods.models import ModRecord
from modman.resolution.graph import DependencyGraph
from modman.resolution.outcome import (
    ADVISORY_POLICY,
    CircularDependency,
    IncompatibilityPair,
    MissingDependency,
    ResolutionOutcome,
    ResolutionPolicy,
    VersionConflict,
)
from modman.semver.semver import RangeStatus, VersionConflictType, classifyMismatch, satisfiesRange

logger = logging.getLogger(__name__)

__all__ = ["mergeCandidates", "buildGraph", "resolveMods"]



def mergeCandidates(installed: Iterable[ModRecord], candidates: Iterable[ModRecord] = ()) -> list[ModRecord]:
    """Installed set with every candidate replacing the record of the same canonical id."""
    merged: dict[str, ModRecord] = {}
    for record in installed:
        merged[normalizeId(record.id)] = record
    for record in candidates:
        merged[normalizeId(record.id)] = record
    return list(merged.values())



def _checkDependency(
    modId: str,
    dependencyId: str,
    requiredRange: str | None,
    target: ModRecord,
) -> VersionConflict | None:
    check = satisfiesRange(target.version, requiredRange)
    if check.status is RangeStatus.SATISFIED:
        return None

    if check.status is RangeStatus.ERROR:
        return VersionConflict(
            modId=modId,
            dependencyId=dependencyId,
            requiredRange=requiredRange,
            installedVersion=target.version,
            conflictType=VersionConflictType.INVALID_FORMAT,
            message=check.message or "invalid version",
        )

    return VersionConflict(
        modId=modId,
        dependencyId=dependencyId,
        requiredRange=requiredRange,
        installedVersion=target.version,
        conflictType=classifyMismatch(check.version, check.requirement),
    )



def buildGraph(
    records: Iterable[ModRecord],
) -> tuple[DependencyGraph, list[MissingDependency], list[VersionConflict]]:
    """
    One node per canonical id; hard dependency edges first, then soft hints.

    A version-conflicted dependency still gets its edge so the order stays
    sensible. Soft hints whose edge would close a cycle are dropped.
    """
    graph = DependencyGraph()
    for record in records:
        graph.addNode(record, normalizeId(record.id))

    missing: list[MissingDependency] = []
    conflicts: list[VersionConflict] = []

    for modId in sorted(graph.nodes):
        node = graph.nodes[modId]
        for dep in node.record.dependencies:
            depId = normalizeId(dep.id)
            if depId not in graph:
                if not dep.optional:
                    node.missing.add(depId)
                    missing.append(MissingDependency(modId, depId, dep.minVersion))
                continue

            graph.addEdge(modId, depId)
            conflict = _checkDependency(modId, depId, dep.minVersion, graph.nodes[depId].record)
            if conflict is None:
                node.satisfied.add(depId)
            else:
                node.conflicting.add(depId)
                conflicts.append(conflict)

    softEdges: list[tuple[str, str]] = []
    for modId in sorted(graph.nodes):
        record = graph.nodes[modId].record
        for otherId in record.loadAfter:
            softEdges.append((modId, normalizeId(otherId)))
        for otherId in record.loadBefore:
            softEdges.append((normalizeId(otherId), modId))

    for laterId, earlierId in sorted(set(softEdges)):
        if laterId not in graph or earlierId not in graph or laterId == earlierId:
            continue
        if graph.reaches(earlierId, laterId):
            logger.debug("Ignoring load hint '%s' after '%s': it contradicts a dependency", laterId, earlierId)
            continue
        graph.addEdge(laterId, earlierId)
        graph.nodes[laterId].loadsAfter.add(earlierId)

    return graph, missing, conflicts



def _renderCycle(graph: DependencyGraph, cycle: list[str]) -> str:
    names = [graph.nodes[modId].record.name or modId for modId in cycle]
    return " -> ".join(names + names[:1])



def _findIncompatibilities(graph: DependencyGraph) -> list[IncompatibilityPair]:
    pairs: dict[tuple[str, str], IncompatibilityPair] = {}
    for modId in sorted(graph.nodes):
        for inc in graph.nodes[modId].record.incompatibleWith:
            otherId = normalizeId(inc.id)
            if otherId == modId or otherId not in graph:
                continue
            key = (min(modId, otherId), max(modId, otherId))
            if key not in pairs:
                pairs[key] = IncompatibilityPair(key[0], key[1], inc.reason)
    return [pairs[key] for key in sorted(pairs)]



def resolveMods(records: Iterable[ModRecord], policy: ResolutionPolicy = ADVISORY_POLICY) -> ResolutionOutcome:
    """
    Pure resolution of a complete mod set.

    Missing non-optional dependencies and cycles always make canResolve
    false. Version conflicts and incompatibilities only do so when `policy`
    says they block. The load order is computed whenever nothing is missing
    and nothing is circular.
    """
    graph, missing, conflicts = buildGraph(records)

    cycles = [
        CircularDependency(modIds=tuple(cycle), description=_renderCycle(graph, cycle))
        for cycle in graph.findCycles()
    ]
    incompatibilities = _findIncompatibilities(graph)

    loadOrder: list[str] = []
    if not missing and not cycles:
        loadOrder = graph.topologicalOrder()

    canResolve = not missing and not cycles
    if policy.blockOnVersionConflict and conflicts:
        canResolve = False
    if policy.blockOnIncompatibility and incompatibilities:
        canResolve = False

    outcome = ResolutionOutcome(
        loadOrder=tuple(loadOrder),
        missing=tuple(missing),
        versionConflicts=tuple(conflicts),
        cycles=tuple(cycles),
        incompatibilities=tuple(incompatibilities),
        canResolve=canResolve,
        policy=policy,
    )
    logger.debug(
        "Resolved %d mods: canResolve=%s missing=%d conflicts=%d cycles=%d incompatible=%d",
        len(graph), canResolve, len(missing), len(conflicts), len(cycles), len(incompatibilities),
    )
    return outcome
