import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import User
from schemas import UserIn
from services import PartnerLinkConflict, UserService


def _users(session: Session, *names: str) -> list[User]:
    service = UserService(session)
    return [
        service.create(UserIn(name=name, email=f"{name.lower()}@example.com"))
        for name in names
    ]


def test_link_is_mutual():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice, bob = _users(session, "Alice", "Bob")
        UserService(session).link_partner(alice.id, "BOB@example.com")

        session.expire_all()
        assert session.get(User, alice.id).partner_id == bob.id
        assert session.get(User, bob.id).partner_id == alice.id


def test_cannot_link_to_self_or_unknown_email():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        (alice,) = _users(session, "Alice")
        service = UserService(session)
        with pytest.raises(ValueError, match="own account"):
            service.link_partner(alice.id, "alice@example.com")
        with pytest.raises(ValueError, match="not found"):
            service.link_partner(alice.id, "nobody@example.com")


def test_partner_already_linked_elsewhere_conflicts():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice, bob, carol = _users(session, "Alice", "Bob", "Carol")
        service = UserService(session)
        service.link_partner(alice.id, "bob@example.com")

        with pytest.raises(PartnerLinkConflict):
            service.link_partner(carol.id, "bob@example.com")
        with pytest.raises(PartnerLinkConflict):
            service.link_partner(alice.id, "carol@example.com")


def test_unlink_clears_both_sides():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice, bob = _users(session, "Alice", "Bob")
        service = UserService(session)
        service.link_partner(alice.id, "bob@example.com")
        service.unlink_partner(bob.id)

        assert session.get(User, alice.id).partner_id is None
        assert session.get(User, bob.id).partner_id is None
        with pytest.raises(ValueError, match="No partner"):
            service.unlink_partner(alice.id)


def test_duplicate_email_is_rejected():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _users(session, "Alice")
        with pytest.raises(ValueError, match="already registered"):
            UserService(session).create(UserIn(name="Other", email="Alice@Example.com"))


def test_couple_summary_clears_dangling_partner():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice, bob = _users(session, "Alice", "Bob")
        alice.partner_id = bob.id
        session.commit()

        summary = UserService(session).couple_summary(alice.id)
        assert summary["couple"]["connected"] is False
        assert session.get(User, alice.id).partner_id is None
