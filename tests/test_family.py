"""Tests for the family membership engine and the live family view."""

import pytest

from family_ledger.exceptions import (
    AlreadyInFamily,
    AlreadyInvited,
    AlreadyMember,
    InvalidOrExpiredCode,
    InviteNotFound,
    MemberNotFound,
    NoFamily,
    NotOwner,
    OwnerCannotLeave,
    SelfInvite,
    ValidationError,
)
from family_ledger.family import (
    FAMILIES,
    INVITES,
    FamilyView,
    generate_invite_code,
)
from family_ledger.models.entities import InviteStatus
from family_ledger.services.storage import Query

from conftest import RecordingNotifier


ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


class TestInviteCodes:
    """Tests for invite code generation."""

    def test_code_length_and_alphabet(self):
        """Test codes use only unambiguous symbols."""
        code = generate_invite_code(10, ALPHABET)
        assert len(code) == 10
        assert set(code) <= set(ALPHABET)
        assert not set(code) & set("0O1I")

    def test_codes_differ(self):
        """Test consecutive codes are not repeated."""
        codes = {generate_invite_code(10, ALPHABET) for _ in range(50)}
        assert len(codes) == 50


class TestCreateAndResolve:
    """Tests for family creation and lookup."""

    async def test_create_family(self, engine, alice):
        """Test a new family has the creator as owner and no members."""
        family = await engine.create_family(alice, "Smith")
        assert family.name == "Smith"
        assert family.owner_id == "alice"
        assert family.member_ids == []

        resolved = await engine.resolve_family(alice)
        assert resolved.id == family.id

    async def test_create_twice_fails(self, engine, alice):
        """Test a principal cannot own two families."""
        await engine.create_family(alice, "Smith")
        with pytest.raises(AlreadyInFamily):
            await engine.create_family(alice, "Jones")

    async def test_member_cannot_create(self, engine, alice, bob):
        """Test a member cannot create a second family."""
        family = await engine.create_family(alice, "Smith")
        await engine.join_with_code(bob, await engine.create_invite_code(alice, family))
        with pytest.raises(AlreadyInFamily):
            await engine.create_family(bob, "Bob's")

    async def test_empty_name_rejected(self, engine, alice):
        """Test whitespace-only names are rejected."""
        with pytest.raises(ValidationError):
            await engine.create_family(alice, "   ")

    async def test_long_name_rejected_before_storing(self, engine, store, alice):
        """Test an over-long name stores nothing and leaves the principal free."""
        with pytest.raises(ValidationError) as exc_info:
            await engine.create_family(alice, "S" * 101)

        assert exc_info.value.issues[0].issue_type == "too_long"
        assert store.count(FAMILIES) == 0
        assert await engine.resolve_family(alice) is None

        await engine.create_family(alice, "Smith")
        assert store.count(FAMILIES) == 1

    async def test_resolve_without_family(self, engine, carol):
        """Test resolve_family returns None for a principal with no family."""
        assert await engine.resolve_family(carol) is None

    async def test_resolve_member(self, engine, alice, bob):
        """Test members resolve to the family they joined."""
        family = await engine.create_family(alice, "Smith")
        await engine.join_with_code(bob, await engine.create_invite_code(alice, family))
        resolved = await engine.resolve_family(bob)
        assert resolved.id == family.id

    async def test_visibility_set(self, engine, alice, bob, carol):
        """Test the visibility set is owner plus members, or just self."""
        family = await engine.create_family(alice, "Smith")
        family = await engine.join_with_code(bob, await engine.create_invite_code(alice, family))

        assert engine.effective_visibility_set(bob, family) == {"alice", "bob"}
        assert engine.effective_visibility_set(carol, None) == {"carol"}


class TestJoinWithCode:
    """Tests for code invites."""

    async def test_join_marks_invite_accepted(self, engine, store, alice, bob):
        """Test joining adds the member and closes the invite."""
        family = await engine.create_family(alice, "Smith")
        code = await engine.create_invite_code(alice, family)

        joined = await engine.join_with_code(bob, code.lower())

        assert joined.member_ids == ["bob"]
        assert joined.member_by_id("bob").email == "Bob@Example.com"
        invites = await store.query(Query(INVITES).where("inviteCode", "==", code))
        assert invites[0].data["status"] == InviteStatus.ACCEPTED.value
        assert invites[0].data["acceptedBy"] == "bob"

    async def test_code_valid_after_one_day(self, engine, clock, alice, bob):
        """Test a code is redeemable one day after issue."""
        family = await engine.create_family(alice, "Smith")
        code = await engine.create_invite_code(alice, family)
        clock.advance(days=1)

        joined = await engine.join_with_code(bob, code)
        assert joined.has_member("bob")

    async def test_code_expired_after_eight_days(self, engine, clock, alice, bob):
        """Test a code is rejected once past its seven-day expiry."""
        family = await engine.create_family(alice, "Smith")
        code = await engine.create_invite_code(alice, family)
        clock.advance(days=8)

        with pytest.raises(InvalidOrExpiredCode) as exc_info:
            await engine.join_with_code(bob, code)
        assert exc_info.value.context["reason"] == "expired"

    async def test_code_single_use(self, engine, alice, bob, carol):
        """Test a second redemption of the same code fails."""
        family = await engine.create_family(alice, "Smith")
        code = await engine.create_invite_code(alice, family)
        await engine.join_with_code(bob, code)

        with pytest.raises(InvalidOrExpiredCode):
            await engine.join_with_code(carol, code)

    async def test_unknown_code(self, engine, bob):
        """Test unknown codes are rejected."""
        with pytest.raises(InvalidOrExpiredCode):
            await engine.join_with_code(bob, "ZZZZZZZZZZ")

    async def test_already_in_family(self, engine, alice, bob, carol):
        """Test a principal with a family cannot join another."""
        smith = await engine.create_family(alice, "Smith")
        await engine.create_family(carol, "Jones")
        code = await engine.create_invite_code(alice, smith)

        with pytest.raises(AlreadyInFamily):
            await engine.join_with_code(carol, code)

    async def test_only_owner_creates_codes(self, engine, alice, bob):
        """Test members cannot issue invite codes."""
        family = await engine.create_family(alice, "Smith")
        family = await engine.join_with_code(bob, await engine.create_invite_code(alice, family))
        with pytest.raises(NotOwner):
            await engine.create_invite_code(bob, family)

    async def test_no_family(self, engine, alice):
        """Test family-scoped operations without a family raise NoFamily."""
        with pytest.raises(NoFamily):
            await engine.create_invite_code(alice, None)


class TestAddressedInvites:
    """Tests for invites by email."""

    async def test_invite_and_accept(self, engine, notifier, alice, bob):
        """Test an addressed invite is visible to the invitee and can be accepted."""
        family = await engine.create_family(alice, "Smith")
        invite = await engine.invite_member(alice, family, "BOB@example.com")

        assert invite.invitee_email == "bob@example.com"
        assert notifier.sent == [("bob@example.com", "Alice Smith", "Smith")]

        pending = await engine.pending_invites(bob)
        assert [i.id for i in pending] == [invite.id]

        joined = await engine.accept_invite(bob, invite.id)
        assert joined.has_member("bob")
        assert await engine.pending_invites(bob) == []

    async def test_decline(self, engine, store, alice, bob):
        """Test declining closes the invite without joining."""
        family = await engine.create_family(alice, "Smith")
        invite = await engine.invite_member(alice, family, "bob@example.com")

        await engine.decline_invite(bob, invite.id)

        doc = await store.get(INVITES, invite.id)
        assert doc.data["status"] == InviteStatus.DECLINED.value
        assert await engine.resolve_family(bob) is None
        with pytest.raises(InviteNotFound):
            await engine.decline_invite(bob, invite.id)

    async def test_decline_only_own_invites(self, engine, store, alice, bob, carol):
        """Test a principal cannot decline invites addressed elsewhere or code invites."""
        family = await engine.create_family(alice, "Smith")
        invite = await engine.invite_member(alice, family, "bob@example.com")
        code = await engine.create_invite_code(alice, family)
        code_invite = (await store.query(Query(INVITES).where("inviteCode", "==", code)))[0]

        with pytest.raises(InviteNotFound):
            await engine.decline_invite(carol, invite.id)
        with pytest.raises(InviteNotFound):
            await engine.decline_invite(carol, code_invite.id)

        assert (await store.get(INVITES, invite.id)).data["status"] == InviteStatus.PENDING.value
        joined = await engine.join_with_code(bob, code)
        assert joined.has_member("bob")

    async def test_accept_someone_elses_invite(self, engine, alice, bob, carol):
        """Test an invite addressed to another email is not found."""
        family = await engine.create_family(alice, "Smith")
        invite = await engine.invite_member(alice, family, "bob@example.com")
        with pytest.raises(InviteNotFound):
            await engine.accept_invite(carol, invite.id)

    async def test_self_invite(self, engine, alice):
        """Test the owner cannot invite their own email, in any case."""
        family = await engine.create_family(alice, "Smith")
        with pytest.raises(SelfInvite):
            await engine.invite_member(alice, family, "Alice@Example.com")

    async def test_duplicate_pending_invite(self, engine, alice):
        """Test a second pending invite to the same email is rejected."""
        family = await engine.create_family(alice, "Smith")
        await engine.invite_member(alice, family, "bob@example.com")
        with pytest.raises(AlreadyInvited):
            await engine.invite_member(alice, family, "Bob@Example.com")

    async def test_already_member(self, engine, alice, bob):
        """Test inviting a current member is rejected."""
        family = await engine.create_family(alice, "Smith")
        family = await engine.join_with_code(bob, await engine.create_invite_code(alice, family))
        with pytest.raises(AlreadyMember):
            await engine.invite_member(alice, family, "bob@example.com")

    async def test_only_owner_invites(self, engine, alice, bob):
        """Test members cannot send invites."""
        family = await engine.create_family(alice, "Smith")
        family = await engine.join_with_code(bob, await engine.create_invite_code(alice, family))
        with pytest.raises(NotOwner):
            await engine.invite_member(bob, family, "carol@example.com")

    async def test_notification_failure_does_not_fail_invite(
        self, store, audit, family_settings, clock, alice,
    ):
        """Test a crashing notifier still leaves the invite in place."""
        from family_ledger.family import FamilyMembershipEngine

        engine = FamilyMembershipEngine(
            store,
            notifier=RecordingNotifier(error=RuntimeError("smtp down")),
            audit_logger=audit,
            settings=family_settings,
            clock=clock,
        )
        family = await engine.create_family(alice, "Smith")
        invite = await engine.invite_member(alice, family, "bob@example.com")

        assert (await store.get(INVITES, invite.id)) is not None
        events = await store.query(Query("auditEvents").where("event_type", "==", "notification_failed"))
        assert len(events) == 1


class TestRemoveLeaveDelete:
    """Tests for membership removal and family deletion."""

    async def _family_with_bob(self, engine, alice, bob):
        family = await engine.create_family(alice, "Smith")
        return await engine.join_with_code(bob, await engine.create_invite_code(alice, family))

    async def test_remove_member(self, engine, alice, bob):
        """Test removal clears both memberIds and members."""
        family = await self._family_with_bob(engine, alice, bob)
        family = await engine.remove_member(alice, family, "bob")

        assert family.member_ids == []
        assert family.members == []
        assert await engine.resolve_family(bob) is None

    async def test_remove_unknown_member(self, engine, alice, bob):
        """Test removing a non-member raises MemberNotFound."""
        family = await self._family_with_bob(engine, alice, bob)
        with pytest.raises(MemberNotFound):
            await engine.remove_member(alice, family, "carol")

    async def test_member_cannot_remove(self, engine, alice, bob):
        """Test only the owner removes members."""
        family = await self._family_with_bob(engine, alice, bob)
        with pytest.raises(NotOwner):
            await engine.remove_member(bob, family, "bob")

    async def test_leave(self, engine, alice, bob):
        """Test a member can leave."""
        family = await self._family_with_bob(engine, alice, bob)
        await engine.leave_family(bob, family)

        assert await engine.resolve_family(bob) is None
        assert (await engine.resolve_family(alice)).member_ids == []

    async def test_owner_cannot_leave(self, engine, alice, bob):
        """Test the owner must delete instead of leaving."""
        family = await self._family_with_bob(engine, alice, bob)
        with pytest.raises(OwnerCannotLeave):
            await engine.leave_family(alice, family)

    async def test_stale_snapshot_is_rechecked(self, engine, alice, bob):
        """Test decisions use the stored family, not the caller's copy."""
        family = await self._family_with_bob(engine, alice, bob)
        await engine.remove_member(alice, family, "bob")

        # `family` still lists bob
        with pytest.raises(MemberNotFound):
            await engine.remove_member(alice, family, "bob")

    async def test_delete_cascades_invites(self, engine, store, alice, bob):
        """Test deleting a family removes all its invites."""
        family = await self._family_with_bob(engine, alice, bob)
        await engine.create_invite_code(alice, family)
        await engine.invite_member(alice, family, "carol@example.com")

        deleted = await engine.delete_family(alice, family)

        assert deleted == 3
        assert await store.get(FAMILIES, family.id) is None
        assert await store.query(Query(INVITES).where("familyId", "==", family.id)) == []
        assert await engine.resolve_family(bob) is None

    async def test_member_cannot_delete(self, engine, alice, bob):
        """Test only the owner deletes the family."""
        family = await self._family_with_bob(engine, alice, bob)
        with pytest.raises(NotOwner):
            await engine.delete_family(bob, family)


class TestFamilyView:
    """Tests for the live family view."""

    async def test_tracks_membership_changes(self, engine, store, alice, bob):
        """Test the owner's view sees a member join and leave without refresh."""
        family = await engine.create_family(alice, "Smith")
        seen = []

        async with FamilyView(engine) as view:
            await view.start(alice)
            view.on_change(seen.append)
            assert view.is_owner
            assert view.visibility_set == {"alice"}

            await engine.join_with_code(bob, await engine.create_invite_code(alice, family))
            assert view.visibility_set == {"alice", "bob"}

            await engine.leave_family(bob, family)
            assert view.visibility_set == {"alice"}

        assert {"alice", "bob"} in seen
        assert store.listener_count == 0

    async def test_removed_member_view_detaches(self, engine, alice, bob):
        """Test a removed member's view drops the family on its own."""
        family = await engine.create_family(alice, "Smith")
        await engine.join_with_code(bob, await engine.create_invite_code(alice, family))

        view = FamilyView(engine)
        await view.start(bob)
        assert view.family.id == family.id

        await engine.remove_member(alice, family, "bob")
        assert view.family is None
        assert view.visibility_set == {"bob"}
        await view.close()

    async def test_refresh_after_join(self, engine, alice, bob):
        """Test refresh() re-targets the view onto a newly joined family."""
        family = await engine.create_family(alice, "Smith")
        view = FamilyView(engine)
        await view.start(bob)
        assert view.family is None

        await engine.join_with_code(bob, await engine.create_invite_code(alice, family))
        await view.refresh()
        assert view.family.id == family.id
        assert view.visibility_set == {"alice", "bob"}
        await view.close()

    async def test_pending_invites_are_live(self, engine, alice, bob):
        """Test addressed invites appear in the invitee's view as they are sent."""
        family = await engine.create_family(alice, "Smith")
        view = FamilyView(engine)
        await view.start(bob)
        assert view.pending_invites == []

        invite = await engine.invite_member(alice, family, "bob@example.com")
        assert [i.id for i in view.pending_invites] == [invite.id]

        await engine.decline_invite(bob, invite.id)
        assert view.pending_invites == []
        await view.close()

    async def test_family_deletion_detaches_members(self, engine, alice, bob):
        """Test members' views clear when the owner deletes the family."""
        family = await engine.create_family(alice, "Smith")
        await engine.join_with_code(bob, await engine.create_invite_code(alice, family))
        view = FamilyView(engine)
        await view.start(bob)

        await engine.delete_family(alice, family)
        assert view.family is None
        await view.close()
