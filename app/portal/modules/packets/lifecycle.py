"""
Packet lifecycle service.

Owns every packet mutation: creation, content edits, restores and status
transitions. Each public operation is one database transaction and returns an
OperationResult instead of raising. Writes are gated on the version (and
status) the caller read, so two editors working from the same snapshot can't
both win. Notification, rendering and cache invalidation run only after the
transaction has committed and never undo it.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from typing import Any, TypeVar

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.portal.audit import record_event
from app.portal.cache import CacheDomain, CacheKey, TTLCache
from app.portal.constants import STAFF_ROLES, PacketStatus, PacketType
from app.portal.errors import (
    ConflictError,
    ContentShapeMismatch,
    ExternalServiceError,
    InvalidTransition,
    NotFound,
    OperationResult,
    PortalError,
    Unauthorized,
)
from app.portal.models import User
from app.portal.rbac import actor_has_role

from .content import (
    PacketContent,
    apply_coach_notes,
    apply_content_update,
    apply_exercise_swap,
    apply_exercise_update,
    apply_nutrition_update,
    dump_content,
    parse_content,
)
from .models import Packet, PacketVersion
from .notifications import Notifier
from .rendering import ArtifactRenderer
from .versions import VersionStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

S = PacketStatus

# action -> {from_status: to_status}. Anything not listed is an InvalidTransition.
TRANSITIONS: dict[str, dict[PacketStatus, PacketStatus]] = {
    "publish": {S.DRAFT: S.PUBLISHED, S.UNPUBLISHED: S.PUBLISHED},
    "unpublish": {S.PUBLISHED: S.UNPUBLISHED},
    "archive": {S.DRAFT: S.ARCHIVED, S.UNPUBLISHED: S.ARCHIVED, S.PUBLISHED: S.ARCHIVED},
}

STATUS_TRANSITIONS: dict[PacketStatus, set[PacketStatus]] = {s: set() for s in PacketStatus}
for _moves in TRANSITIONS.values():
    for _src, _dst in _moves.items():
        STATUS_TRANSITIONS[_src].add(_dst)

# Content may change in any of these; ARCHIVED is read-only.
EDITABLE_STATUSES = frozenset({S.DRAFT, S.UNPUBLISHED, S.PUBLISHED})

Authorizer = Callable[[int | None, Iterable[str]], bool]


@dataclass(frozen=True)
class LifecycleEvent:
    kind: str  # created | content_updated | restored | published | unpublished | archived | artifact_rendered | artifact_cleared
    packet_id: int
    user_id: int
    version: int
    needs_artifact: bool = False


class PacketLifecycleEngine:
    def __init__(
        self,
        s: Session,
        *,
        notifier: Notifier,
        renderer: ArtifactRenderer,
        authorizer: Authorizer | None = None,
        cache: TTLCache | None = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        self.s = s
        self.notifier = notifier
        self.renderer = renderer
        self.authorizer: Authorizer = authorizer or partial(actor_has_role, s)
        self.cache = cache
        self.clock = clock
        self.versions = VersionStore(s, clock=clock)
        self.emitted: list[LifecycleEvent] = []

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_packet(
        self,
        *,
        actor_id: int,
        user_id: int,
        packet_type: str,
        content: Mapping[str, Any],
    ) -> OperationResult[Packet]:
        def body() -> tuple[Packet, list[LifecycleEvent]]:
            self._gate(actor_id, "create")
            owner = self.s.get(User, user_id)
            if owner is None:
                raise NotFound("User not found.", user_id=user_id)
            try:
                ptype = PacketType((packet_type or "").strip().upper())
            except ValueError:
                raise ContentShapeMismatch(f"Unknown packet type {packet_type!r}.") from None
            parsed = parse_content(ptype, content)
            snapshot = dump_content(parsed)
            now = self.clock()

            packet = Packet(
                user_id=owner.id,
                packet_type=ptype.value,
                status=S.DRAFT.value,
                version=1,
                content=snapshot,
                coach_notes=parsed.coach_notes,
                created_at=now,
                updated_at=now,
                last_modified_by_user_id=actor_id,
            )
            self.s.add(packet)
            self.s.flush()
            self.versions.append(packet.id, snapshot, actor_id)

            self._audit(actor_id, "packet.create", packet, {"packet_type": ptype.value, "owner_user_id": owner.id})
            return packet, [LifecycleEvent("created", packet.id, packet.user_id, packet.version)]

        return self._run("create", body)

    # ------------------------------------------------------------------
    # Content mutations
    # ------------------------------------------------------------------

    def update_content(
        self,
        packet_id: int,
        updates: Mapping[str, Any],
        *,
        actor_id: int,
        expected_version: int,
    ) -> OperationResult[Packet]:
        return self._mutate_content(
            packet_id,
            actor_id=actor_id,
            expected_version=expected_version,
            edit="content",
            change=lambda c: apply_content_update(c, updates),
            metadata={"fields": sorted(updates)},
        )

    def update_exercise_parameter(
        self,
        packet_id: int,
        exercise_index: int,
        updates: Mapping[str, Any],
        *,
        actor_id: int,
        expected_version: int,
        phase_index: int | None = None,
    ) -> OperationResult[Packet]:
        return self._mutate_content(
            packet_id,
            actor_id=actor_id,
            expected_version=expected_version,
            edit="exercise",
            change=lambda c: apply_exercise_update(c, exercise_index, updates, phase_index=phase_index),
            metadata={"exercise_index": exercise_index, "phase_index": phase_index, "fields": sorted(updates)},
        )

    def swap_exercise(
        self,
        packet_id: int,
        exercise_index: int,
        replacement: Mapping[str, Any],
        *,
        actor_id: int,
        expected_version: int,
        phase_index: int | None = None,
    ) -> OperationResult[Packet]:
        return self._mutate_content(
            packet_id,
            actor_id=actor_id,
            expected_version=expected_version,
            edit="exercise_swap",
            change=lambda c: apply_exercise_swap(c, exercise_index, replacement, phase_index=phase_index),
            metadata={"exercise_index": exercise_index, "phase_index": phase_index, "new_exercise_id": replacement.get("id")},
        )

    def update_nutrition_item(
        self,
        packet_id: int,
        item_index: int,
        updates: Mapping[str, Any],
        *,
        actor_id: int,
        expected_version: int,
    ) -> OperationResult[Packet]:
        return self._mutate_content(
            packet_id,
            actor_id=actor_id,
            expected_version=expected_version,
            edit="nutrition",
            change=lambda c: apply_nutrition_update(c, item_index, updates),
            metadata={"item_index": item_index, "fields": sorted(updates)},
        )

    def add_coach_notes(
        self,
        packet_id: int,
        notes: str,
        *,
        actor_id: int,
        expected_version: int,
    ) -> OperationResult[Packet]:
        return self._mutate_content(
            packet_id,
            actor_id=actor_id,
            expected_version=expected_version,
            edit="coach_notes",
            change=lambda c: apply_coach_notes(c, notes),
            metadata={"length": len(notes or "")},  # don't log note text
        )

    def restore_version(
        self,
        packet_id: int,
        version_number: int,
        *,
        actor_id: int,
        expected_version: int,
    ) -> OperationResult[PacketVersion]:
        """
        Append a copy of an older snapshot as the newest version. History is
        never rewritten and the packet's status is left alone.
        """

        def body() -> tuple[PacketVersion, list[LifecycleEvent]]:
            self._gate(actor_id, "restore")
            packet = self._load(packet_id)
            self._require_editable(packet)
            self._check_version(packet, expected_version)
            old = self.versions.get_version(packet.id, version_number)
            restored = parse_content(packet.packet_type, old.content)
            self._write_content(packet, restored, actor_id=actor_id, expected_version=expected_version, restore_of=version_number)
            self._audit(actor_id, "packet.restore", packet, {"restore_of": version_number, "version": packet.version})
            newest = self.versions.get_version(packet.id, packet.version)
            return newest, [LifecycleEvent("restored", packet.id, packet.user_id, packet.version)]

        return self._run("restore", body)

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    def publish(self, packet_id: int, *, actor_id: int, expected_version: int, reason: str | None = None) -> OperationResult[Packet]:
        return self._transition("publish", packet_id, actor_id=actor_id, expected_version=expected_version, reason=reason)

    def unpublish(self, packet_id: int, *, actor_id: int, expected_version: int, reason: str | None = None) -> OperationResult[Packet]:
        return self._transition("unpublish", packet_id, actor_id=actor_id, expected_version=expected_version, reason=reason)

    def archive(self, packet_id: int, *, actor_id: int, expected_version: int, reason: str | None = None) -> OperationResult[Packet]:
        return self._transition("archive", packet_id, actor_id=actor_id, expected_version=expected_version, reason=reason)

    # ------------------------------------------------------------------
    # Rendering and history
    # ------------------------------------------------------------------

    def regenerate_artifact(self, packet_id: int, *, actor_id: int) -> OperationResult[Packet]:
        """
        Render the current content and store the new reference. Legal in every
        status, creates no version. A renderer failure leaves the old reference.
        """
        try:
            self._gate(actor_id, "render")
            packet = self._load(packet_id)
        except PortalError as e:
            self.s.rollback()
            logger.warning("packet render rejected: packet_id=%s %s: %s", packet_id, e.code, e.message)
            return OperationResult.failure(e)

        rendered_version = packet.version
        try:
            ref = self._render(packet)
        except ExternalServiceError as e:
            self.s.rollback()
            return OperationResult.failure(e)

        def body() -> tuple[Packet, list[LifecycleEvent]]:
            self._store_artifact_ref(packet, ref, rendered_version)
            self._audit(actor_id, "packet.render", packet, {"artifact_ref": ref, "version": rendered_version})
            return packet, [LifecycleEvent("artifact_rendered", packet.id, packet.user_id, packet.version)]

        return self._run("render", body)

    def clear_artifact(self, packet_id: int, *, actor_id: int, reason: str | None = None) -> OperationResult[Packet]:
        """Drop the rendered reference so the packet shows as render pending. Content and version are untouched."""

        def body() -> tuple[Packet, list[LifecycleEvent]]:
            self._gate(actor_id, "clear artifacts of")
            packet = self._load(packet_id)
            previous = packet.rendered_artifact_ref
            if previous is None:
                raise NotFound("Packet has no rendered artifact.", packet_id=packet.id)
            self.s.execute(
                update(Packet)
                .where(Packet.id == packet.id)
                .values(rendered_artifact_ref=None)
                .execution_options(synchronize_session=False)
            )
            self.s.refresh(packet)
            self._audit(actor_id, "packet.artifact_clear", packet, {"artifact_ref": previous}, reason=reason)
            return packet, [LifecycleEvent("artifact_cleared", packet.id, packet.user_id, packet.version)]

        return self._run("clear artifact", body)

    def list_versions(self, packet_id: int, *, actor_id: int) -> OperationResult[list[PacketVersion]]:
        try:
            self._gate(actor_id, "history")
            packet = self._load(packet_id)
            return OperationResult.success(self.versions.list_versions(packet.id))
        except PortalError as e:
            return OperationResult.failure(e)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _run(self, action: str, body: Callable[[], tuple[T, list[LifecycleEvent]]]) -> OperationResult[T]:
        try:
            value, events = body()
            self.s.commit()
        except PortalError as e:
            self.s.rollback()
            logger.warning("packet %s rejected: %s: %s", action, e.code, e.message)
            return OperationResult.failure(e)
        except IntegrityError as e:
            # Another writer appended the same version number first.
            self.s.rollback()
            logger.warning("packet %s lost a concurrent write: %s", action, e.orig)
            return OperationResult.failure(ConflictError("Packet was modified concurrently; reload and retry."))
        except Exception:
            self.s.rollback()
            raise

        warnings = self._after_commit(events)
        return OperationResult.success(value, warnings=warnings)

    def _after_commit(self, events: list[LifecycleEvent]) -> list[ExternalServiceError]:
        warnings: list[ExternalServiceError] = []
        for ev in events:
            self.emitted.append(ev)
            self._invalidate(ev.user_id)
            if ev.kind != "published":
                continue
            if ev.needs_artifact:
                warning = self._render_after_publish(ev)
                if warning is not None:
                    warnings.append(warning)
            try:
                self.notifier.notify_client_packet_published(ev.user_id, ev.packet_id)
            except Exception as e:
                logger.error("Packet published notification failed packet_id=%s: %s", ev.packet_id, e)
                warnings.append(ExternalServiceError("Client notification failed.", packet_id=ev.packet_id))
        return warnings

    def _render_after_publish(self, ev: LifecycleEvent) -> ExternalServiceError | None:
        packet = self.s.get(Packet, ev.packet_id)
        if packet is None:
            return None
        try:
            ref = self._render(packet)
            self._store_artifact_ref(packet, ref, ev.version)
            self.s.commit()
        except (ExternalServiceError, ConflictError) as e:
            self.s.rollback()
            logger.warning("Render after publish skipped packet_id=%s: %s", ev.packet_id, e.message)
            return e if isinstance(e, ExternalServiceError) else None
        except Exception:
            self.s.rollback()
            raise
        # Listings read while the render ran still hold the empty ref.
        self._invalidate(ev.user_id)
        return None

    def _render(self, packet: Packet) -> str:
        try:
            return self.renderer.render_packet_to_artifact(packet.id, packet.content)
        except Exception as e:
            logger.error("Artifact render failed packet_id=%s: %s", packet.id, e)
            raise ExternalServiceError("Rendering the packet artifact failed.", packet_id=packet.id) from e

    def _store_artifact_ref(self, packet: Packet, ref: str, rendered_version: int) -> None:
        # Only attach the artifact to the content it was rendered from.
        res = self.s.execute(
            update(Packet)
            .where(Packet.id == packet.id, Packet.version == rendered_version)
            .values(rendered_artifact_ref=ref)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            raise ConflictError("Packet content changed while rendering; render again.", packet_id=packet.id)
        self.s.refresh(packet)

    def _invalidate(self, user_id: int) -> None:
        if self.cache is None:
            return
        self.cache.invalidate(CacheKey.of(CacheDomain.PACKET_LISTS))
        self.cache.invalidate(CacheKey.of(CacheDomain.CLIENT_PACKETS, user_id))

    def _gate(self, actor_id: int | None, action: str) -> None:
        if not self.authorizer(actor_id, STAFF_ROLES):
            raise Unauthorized(f"Not allowed to {action} packets.", actor_id=actor_id)

    def _load(self, packet_id: int) -> Packet:
        packet = self.s.get(Packet, packet_id, populate_existing=True)
        if packet is None:
            raise NotFound("Packet not found.", packet_id=packet_id)
        return packet

    def _require_editable(self, packet: Packet) -> None:
        if PacketStatus(packet.status) not in EDITABLE_STATUSES:
            raise InvalidTransition(f"{packet.status} packets are read-only.", status=packet.status)

    def _check_version(self, packet: Packet, expected_version: int) -> None:
        if packet.version != expected_version:
            raise ConflictError(
                "Packet was modified since it was read; reload and retry.",
                expected_version=expected_version,
                current_version=packet.version,
            )

    def _mutate_content(
        self,
        packet_id: int,
        *,
        actor_id: int,
        expected_version: int,
        edit: str,
        change: Callable[[PacketContent], PacketContent],
        metadata: dict[str, Any],
    ) -> OperationResult[Packet]:
        def body() -> tuple[Packet, list[LifecycleEvent]]:
            self._gate(actor_id, "edit")
            packet = self._load(packet_id)
            self._require_editable(packet)
            self._check_version(packet, expected_version)
            current = parse_content(packet.packet_type, packet.content)
            updated = change(current)
            self._write_content(packet, updated, actor_id=actor_id, expected_version=expected_version)
            self._audit(actor_id, "packet.edit", packet, {"edit": edit, "version": packet.version, **metadata})
            return packet, [LifecycleEvent("content_updated", packet.id, packet.user_id, packet.version)]

        return self._run(f"edit:{edit}", body)

    def _write_content(
        self,
        packet: Packet,
        content: PacketContent,
        *,
        actor_id: int,
        expected_version: int,
        restore_of: int | None = None,
    ) -> None:
        snapshot = dump_content(content)
        next_version = expected_version + 1
        res = self.s.execute(
            update(Packet)
            .where(
                Packet.id == packet.id,
                Packet.version == expected_version,
                Packet.status == packet.status,
            )
            .values(
                content=snapshot,
                coach_notes=content.coach_notes,
                version=next_version,
                updated_at=self.clock(),
                last_modified_by_user_id=actor_id,
            )
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            raise ConflictError("Packet was modified concurrently; reload and retry.", expected_version=expected_version)

        appended = self.versions.append(packet.id, snapshot, actor_id, restore_of=restore_of)
        if appended != next_version:
            raise ConflictError("Version history is ahead of the packet; reload and retry.", packet_id=packet.id)
        self.s.refresh(packet)

    def _transition(
        self,
        action: str,
        packet_id: int,
        *,
        actor_id: int,
        expected_version: int,
        reason: str | None,
    ) -> OperationResult[Packet]:
        def body() -> tuple[Packet, list[LifecycleEvent]]:
            self._gate(actor_id, action)
            packet = self._load(packet_id)
            current = PacketStatus(packet.status)
            target = TRANSITIONS[action].get(current)
            if target is None:
                raise InvalidTransition(
                    f"Cannot {action} a {current.value} packet.",
                    action=action,
                    status=current.value,
                )
            self._check_version(packet, expected_version)

            now = self.clock()
            values: dict[str, Any] = {"status": target.value, "updated_at": now}
            if target is S.PUBLISHED:
                values.update(published_at=now, published_by_user_id=actor_id)

            # Status is part of the predicate: status flips don't bump the version.
            res = self.s.execute(
                update(Packet)
                .where(
                    Packet.id == packet.id,
                    Packet.version == expected_version,
                    Packet.status == current.value,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                raise ConflictError("Packet status changed concurrently; reload and retry.", packet_id=packet.id)
            self.s.refresh(packet)

            self._audit(
                actor_id,
                f"packet.{action}",
                packet,
                {"from": current.value, "to": target.value, "version": packet.version},
                reason=reason,
            )
            kind = {"publish": "published", "unpublish": "unpublished", "archive": "archived"}[action]
            ev = LifecycleEvent(
                kind,
                packet.id,
                packet.user_id,
                packet.version,
                needs_artifact=(target is S.PUBLISHED and packet.rendered_artifact_ref is None),
            )
            return packet, [ev]

        return self._run(action, body)

    def _audit(
        self,
        actor_id: int | None,
        action: str,
        packet: Packet,
        metadata: dict[str, Any],
        *,
        reason: str | None = None,
    ) -> None:
        actor = self.s.get(User, actor_id) if actor_id is not None else None
        record_event(
            self.s,
            actor=actor,
            action=action,
            entity_type="Packet",
            entity_id=str(packet.id),
            reason=reason,
            metadata={"owner_user_id": packet.user_id, **metadata},
        )
