"""Interaction edges (likes, follows) and the counters that mirror them.

Each edge kind names its edge table, the parent row whose counter caches the
number of live edges, and the columns tying them together. Creating or
removing an edge and adjusting the counter happen in one transaction, so a
failure part way leaves neither change behind. Decrements are floored at 0.
"""
import enum
from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy import case, delete, func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

import models
from errors import AlreadyExists, NotFound, ValidationFailed

logger = structlog.get_logger(__name__)


class EdgeResult(str, enum.Enum):
    CREATED = "created"
    REMOVED = "removed"


@dataclass(frozen=True)
class EdgeKind:
    name: str
    edge_model: type
    actor_field: str
    target_field: str
    target_model: type
    counter_field: str
    # optional mirror counter on the acting user (e.g. following_count)
    actor_counter_field: Optional[str] = None
    allow_self: bool = True
    exists_message: str = "Already exists"

    @property
    def actor_column(self):
        return getattr(self.edge_model, self.actor_field)

    @property
    def target_column(self):
        return getattr(self.edge_model, self.target_field)

    @property
    def counter_column(self):
        return getattr(self.target_model, self.counter_field)


LIKE = EdgeKind(
    name="like",
    edge_model=models.Like,
    actor_field="user_id",
    target_field="project_id",
    target_model=models.Project,
    counter_field="likes_count",
    exists_message="Already liked",
)

FOLLOW = EdgeKind(
    name="follow",
    edge_model=models.Follow,
    actor_field="follower_id",
    target_field="following_id",
    target_model=models.User,
    counter_field="followers_count",
    actor_counter_field="following_count",
    allow_self=False,
    exists_message="Already following",
)


def _increment(column):
    return column + 1


def _decrement_floored(column):
    return case((column > 0, column - 1), else_=0)


def _edge_query(db: Session, kind: EdgeKind, actor_id: int, target_id: int):
    return db.query(kind.edge_model).filter(
        kind.actor_column == actor_id, kind.target_column == target_id
    )


def _require_live_target(db: Session, kind: EdgeKind, target_id: int) -> None:
    model = kind.target_model
    found = (
        db.query(model.id)
        .filter(model.id == target_id, model.deleted_at.is_(None))
        .first()
    )
    if found is None:
        raise NotFound(model.__name__)


def _require_live_actor(db: Session, actor_id: int) -> None:
    found = (
        db.query(models.User.id)
        .filter(models.User.id == actor_id, models.User.deleted_at.is_(None))
        .first()
    )
    if found is None:
        raise NotFound("User")


def _bump(db: Session, model, row_id: int, field: str, expression) -> None:
    column = getattr(model, field)
    db.execute(
        update(model)
        .where(model.id == row_id)
        .values({field: expression(column)})
        .execution_options(synchronize_session=False)
    )


def counter_value(db: Session, kind: EdgeKind, target_id: int) -> int:
    return (
        db.query(kind.counter_column)
        .filter(kind.target_model.id == target_id)
        .scalar()
    ) or 0


def has_edge(db: Session, kind: EdgeKind, actor_id: int, target_id: int) -> bool:
    return _edge_query(db, kind, actor_id, target_id).first() is not None


def add_edge(db: Session, kind: EdgeKind, actor_id: int, target_id: int) -> EdgeResult:
    if not kind.allow_self and actor_id == target_id:
        raise ValidationFailed(f"Cannot {kind.name} yourself")
    _require_live_actor(db, actor_id)
    _require_live_target(db, kind, target_id)
    if has_edge(db, kind, actor_id, target_id):
        raise AlreadyExists(kind.exists_message)

    try:
        db.add(kind.edge_model(**{kind.actor_field: actor_id, kind.target_field: target_id}))
        db.flush()
        _bump(db, kind.target_model, target_id, kind.counter_field, _increment)
        if kind.actor_counter_field:
            _bump(db, models.User, actor_id, kind.actor_counter_field, _increment)
        db.commit()
    except IntegrityError:
        # a concurrent request inserted the same pair first
        db.rollback()
        raise AlreadyExists(kind.exists_message)
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info("Edge created", kind=kind.name, actor_id=actor_id, target_id=target_id)
    return EdgeResult.CREATED


def remove_edge(db: Session, kind: EdgeKind, actor_id: int, target_id: int) -> EdgeResult:
    if not has_edge(db, kind, actor_id, target_id):
        raise NotFound(kind.name.capitalize())

    try:
        removed = db.execute(
            delete(kind.edge_model)
            .where(kind.actor_column == actor_id, kind.target_column == target_id)
            .execution_options(synchronize_session=False)
        ).rowcount
        if removed == 0:
            # lost a race with another removal of the same edge
            db.rollback()
            raise NotFound(kind.name.capitalize())
        _bump(db, kind.target_model, target_id, kind.counter_field, _decrement_floored)
        if kind.actor_counter_field:
            _bump(db, models.User, actor_id, kind.actor_counter_field, _decrement_floored)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info("Edge removed", kind=kind.name, actor_id=actor_id, target_id=target_id)
    return EdgeResult.REMOVED


def drop_user_edges(db: Session, user_id: int) -> None:
    """Delete every edge touching a user and settle the affected counters.

    Runs inside the caller's transaction; the caller commits or rolls back.
    """
    for kind in (LIKE, FOLLOW):
        outgoing = db.query(kind.target_column).filter(kind.actor_column == user_id).all()
        for (target_id,) in outgoing:
            _bump(db, kind.target_model, target_id, kind.counter_field, _decrement_floored)
        db.execute(
            delete(kind.edge_model)
            .where(kind.actor_column == user_id)
            .execution_options(synchronize_session=False)
        )
        if kind.actor_counter_field:
            incoming = db.query(kind.actor_column).filter(kind.target_column == user_id).all()
            for (actor_id,) in incoming:
                _bump(db, models.User, actor_id, kind.actor_counter_field, _decrement_floored)
            db.execute(
                delete(kind.edge_model)
                .where(kind.target_column == user_id)
                .execution_options(synchronize_session=False)
            )


def recount(db: Session, kind: EdgeKind, target_id: int) -> int:
    """Reset a target's counter to its live edge cardinality."""
    _require_live_target(db, kind, target_id)
    live = (
        db.query(func.count(kind.edge_model.id))
        .filter(kind.target_column == target_id)
        .scalar()
    ) or 0
    db.execute(
        update(kind.target_model)
        .where(kind.target_model.id == target_id)
        .values({kind.counter_field: live})
        .execution_options(synchronize_session=False)
    )
    db.commit()
    logger.info("Counter recomputed", kind=kind.name, target_id=target_id, value=live)
    return live


def record_view(db: Session, project_id: int) -> None:
    db.execute(
        update(models.Project)
        .where(models.Project.id == project_id, models.Project.deleted_at.is_(None))
        .values(views=models.Project.views + 1)
        .execution_options(synchronize_session=False)
    )
    db.commit()


# --- Listings ---
def get_likes(db: Session, project_id: int) -> list[models.Like]:
    return (
        db.query(models.Like)
        .filter(models.Like.project_id == project_id)
        .order_by(models.Like.created_at.desc(), models.Like.id.desc())
        .all()
    )


def get_followers(db: Session, user_id: int) -> list[models.User]:
    return (
        db.query(models.User)
        .join(models.Follow, models.Follow.follower_id == models.User.id)
        .filter(models.Follow.following_id == user_id, models.User.deleted_at.is_(None))
        .order_by(models.Follow.id.desc())
        .all()
    )


def get_following(db: Session, user_id: int) -> list[models.User]:
    return (
        db.query(models.User)
        .join(models.Follow, models.Follow.following_id == models.User.id)
        .filter(models.Follow.follower_id == user_id, models.User.deleted_at.is_(None))
        .order_by(models.Follow.id.desc())
        .all()
    )
