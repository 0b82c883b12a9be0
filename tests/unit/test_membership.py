import asyncio
import pytest

from app.core.errors import (
    ForbiddenException,
    InvalidOperationException,
    InvalidRequestException,
    JoinRequestNotFoundException,
    NoOpException,
    RoomNotFoundException,
    UserNotFoundException,
    ValidationException
)
from app.services import membership_service, room_store


class TestCreateGroupRoom:
    """그룹/커뮤니티 채팅방 생성 테스트"""

    @pytest.mark.asyncio
    async def test_creator_becomes_admin(self, test_session, gateway, fake_provider, test_user_1, test_user_2, test_user_3):
        result = await membership_service.create_group_room(
            test_session,
            gateway,
            creator_id=test_user_1.id,
            room_type="group",
            name="  House Hunting  ",
            member_ids=[test_user_2.id, test_user_3.id, test_user_2.id, test_user_1.id]
        )

        room = result.room
        assert room.name == "House Hunting"
        assert room.member_count == 3
        assert room_store.find_member(room, test_user_1.id).role == "admin"
        assert room_store.find_member(room, test_user_2.id).role == "member"
        assert result.channel.synced is True
        assert fake_provider.channels[f"room_{room.id}"]["data"]["name"] == "House Hunting"

    @pytest.mark.asyncio
    async def test_community_channel_id(self, test_session, gateway, test_user_1):
        result = await membership_service.create_group_room(
            test_session, gateway, creator_id=test_user_1.id, room_type="community", name="Dorm Board"
        )

        assert result.room.member_count == 1
        assert result.channel.channel_id == f"community_{result.room.id}"

    @pytest.mark.asyncio
    async def test_invalid_room_type(self, test_session, gateway, test_user_1):
        with pytest.raises(ValidationException):
            await membership_service.create_group_room(
                test_session, gateway, creator_id=test_user_1.id, room_type="private", name="Nope"
            )

    @pytest.mark.asyncio
    async def test_unknown_member(self, test_session, gateway, test_user_1):
        with pytest.raises(UserNotFoundException):
            await membership_service.create_group_room(
                test_session, gateway, creator_id=test_user_1.id, room_type="group", name="Ghosts", member_ids=[4242]
            )


class TestAddMembers:
    """멤버 추가 테스트"""

    @pytest.mark.asyncio
    async def test_admin_adds_member(self, test_session, gateway, fake_provider, group_room, test_user_1, test_user_4):
        fake_provider.seed_channel(f"room_{group_room.id}", [str(uid) for uid in group_room.member_ids])

        change = await membership_service.add_members(
            test_session, gateway, group_room.id, test_user_1.id, [test_user_4.id]
        )

        assert change.member_ids == [test_user_4.id]
        assert change.channel_synced is True
        assert change.room.member_count == 4
        assert str(test_user_4.id) in fake_provider.channels[f"room_{group_room.id}"]["members"]

    @pytest.mark.asyncio
    async def test_moderator_can_add(self, test_session, gateway, group_room, test_user_2, test_user_4):
        change = await membership_service.add_members(
            test_session, gateway, group_room.id, test_user_2.id, [test_user_4.id]
        )

        assert change.member_ids == [test_user_4.id]

    @pytest.mark.asyncio
    async def test_existing_members_and_self_are_skipped(self, test_session, gateway, group_room, test_user_1, test_user_3, test_user_4):
        change = await membership_service.add_members(
            test_session, gateway, group_room.id, test_user_1.id, [test_user_1.id, test_user_3.id, test_user_4.id]
        )

        assert change.member_ids == [test_user_4.id]

    @pytest.mark.asyncio
    async def test_all_existing_is_no_op(self, test_session, gateway, group_room, test_user_1, test_user_3):
        with pytest.raises(NoOpException) as exc_info:
            await membership_service.add_members(
                test_session, gateway, group_room.id, test_user_1.id, [test_user_3.id]
            )

        assert exc_info.value.message == "All members are already in the chat"

    @pytest.mark.asyncio
    async def test_regular_member_forbidden(self, test_session, gateway, group_room, test_user_3, test_user_4):
        with pytest.raises(ForbiddenException):
            await membership_service.add_members(
                test_session, gateway, group_room.id, test_user_3.id, [test_user_4.id]
            )

    @pytest.mark.asyncio
    async def test_non_member_forbidden(self, test_session, gateway, group_room, test_user_4, platform_admin):
        with pytest.raises(ForbiddenException):
            await membership_service.add_members(
                test_session, gateway, group_room.id, test_user_4.id, [platform_admin.id]
            )

    @pytest.mark.asyncio
    async def test_private_room_rejected(self, test_session, gateway, private_room, test_user_1, test_user_3):
        with pytest.raises(InvalidOperationException):
            await membership_service.add_members(
                test_session, gateway, private_room.id, test_user_1.id, [test_user_3.id]
            )

    @pytest.mark.asyncio
    async def test_empty_member_ids(self, test_session, gateway, group_room, test_user_1):
        with pytest.raises(InvalidRequestException):
            await membership_service.add_members(test_session, gateway, group_room.id, test_user_1.id, [])

    @pytest.mark.asyncio
    async def test_unknown_room(self, test_session, gateway, test_user_1):
        with pytest.raises(RoomNotFoundException):
            await membership_service.add_members(test_session, gateway, 999, test_user_1.id, [2])

    @pytest.mark.asyncio
    async def test_provider_failure_keeps_membership(self, test_session, gateway, fake_provider, group_room, test_user_1, test_user_4):
        fake_provider.fail_mode = "server_error"

        change = await membership_service.add_members(
            test_session, gateway, group_room.id, test_user_1.id, [test_user_4.id]
        )

        assert change.channel_synced is False
        assert test_user_4.id in change.room.member_ids


class TestRemoveMembers:
    """멤버 제거 테스트"""

    @pytest.mark.asyncio
    async def test_admin_removes_member(self, test_session, gateway, group_room, test_user_1, test_user_3):
        change = await membership_service.remove_members(
            test_session, gateway, group_room.id, test_user_1.id, [test_user_3.id]
        )

        assert change.member_ids == [test_user_3.id]
        assert change.room.member_count == 2
        assert test_user_3.id not in change.room.member_ids

    @pytest.mark.asyncio
    async def test_moderator_cannot_remove_moderator_or_admin(self, test_session, gateway, group_room, test_user_1, test_user_2):
        with pytest.raises(ForbiddenException):
            await membership_service.remove_members(
                test_session, gateway, group_room.id, test_user_2.id, [test_user_1.id]
            )

    @pytest.mark.asyncio
    async def test_moderator_removes_regular_member(self, test_session, gateway, group_room, test_user_2, test_user_3):
        change = await membership_service.remove_members(
            test_session, gateway, group_room.id, test_user_2.id, [test_user_3.id]
        )

        assert change.member_ids == [test_user_3.id]

    @pytest.mark.asyncio
    async def test_removing_last_admin_rejected(self, test_session, gateway, group_room, test_user_1):
        with pytest.raises(InvalidOperationException):
            await membership_service.remove_members(
                test_session, gateway, group_room.id, test_user_1.id, [test_user_1.id]
            )

    @pytest.mark.asyncio
    async def test_non_members_is_no_op(self, test_session, gateway, group_room, test_user_1, test_user_4):
        with pytest.raises(NoOpException):
            await membership_service.remove_members(
                test_session, gateway, group_room.id, test_user_1.id, [test_user_4.id]
            )

    @pytest.mark.asyncio
    async def test_private_room_rejected(self, test_session, gateway, private_room, test_user_1, test_user_2):
        with pytest.raises(InvalidOperationException):
            await membership_service.remove_members(
                test_session, gateway, private_room.id, test_user_1.id, [test_user_2.id]
            )


class TestUpdateMemberRoles:
    """역할 변경 테스트"""

    @pytest.mark.asyncio
    async def test_admin_promotes_member(self, test_session, gateway, fake_provider, group_room, test_user_1, test_user_3):
        fake_provider.seed_channel(f"room_{group_room.id}", [str(uid) for uid in group_room.member_ids])

        change = await membership_service.update_member_roles(
            test_session, gateway, group_room.id, test_user_1.id, [test_user_3.id], "moderator"
        )

        assert change.member_ids == [test_user_3.id]
        assert change.role == "moderator"
        assert change.channel_synced is True
        assert room_store.find_member(change.room, test_user_3.id).role == "moderator"
        # 역할 변경은 채널 멤버십을 바꾸지 않음
        assert len(fake_provider.channels[f"room_{group_room.id}"]["members"]) == 3

    @pytest.mark.asyncio
    async def test_moderator_cannot_grant_admin(self, test_session, gateway, group_room, test_user_2, test_user_3):
        with pytest.raises(ForbiddenException):
            await membership_service.update_member_roles(
                test_session, gateway, group_room.id, test_user_2.id, [test_user_3.id], "admin"
            )

    @pytest.mark.asyncio
    async def test_demoting_last_admin_rejected(self, test_session, gateway, group_room, test_user_1):
        with pytest.raises(InvalidOperationException):
            await membership_service.update_member_roles(
                test_session, gateway, group_room.id, test_user_1.id, [test_user_1.id], "member"
            )

    @pytest.mark.asyncio
    async def test_unchanged_role_is_no_op(self, test_session, gateway, group_room, test_user_1, test_user_3):
        with pytest.raises(NoOpException):
            await membership_service.update_member_roles(
                test_session, gateway, group_room.id, test_user_1.id, [test_user_3.id], "member"
            )

    @pytest.mark.asyncio
    async def test_non_member_target(self, test_session, gateway, group_room, test_user_1, test_user_4):
        with pytest.raises(InvalidRequestException):
            await membership_service.update_member_roles(
                test_session, gateway, group_room.id, test_user_1.id, [test_user_4.id], "moderator"
            )

    @pytest.mark.asyncio
    async def test_invalid_role(self, test_session, gateway, group_room, test_user_1, test_user_3):
        with pytest.raises(ValidationException):
            await membership_service.update_member_roles(
                test_session, gateway, group_room.id, test_user_1.id, [test_user_3.id], "owner"
            )


class TestReadAndDelete:
    """조회 및 삭제 테스트"""

    @pytest.mark.asyncio
    async def test_get_room_reconciles_channel(self, test_session, gateway, fake_provider, group_room, test_user_1, test_user_3):
        channel_id = f"room_{group_room.id}"
        # drift: user3 누락, 알 수 없는 사용자 99 존재
        fake_provider.seed_channel(channel_id, [str(test_user_1.id), "99"])

        result = await membership_service.get_room_for_member(test_session, gateway, group_room.id, test_user_3.id)

        assert result.channel.synced is True
        assert sorted(fake_provider.channels[channel_id]["members"]) == sorted(
            str(uid) for uid in group_room.member_ids
        )

    @pytest.mark.asyncio
    async def test_get_room_non_member_forbidden(self, test_session, gateway, group_room, test_user_4):
        with pytest.raises(ForbiddenException):
            await membership_service.get_room_for_member(test_session, gateway, group_room.id, test_user_4.id)

    @pytest.mark.asyncio
    async def test_room_admin_deletes(self, test_session, gateway, fake_provider, group_room, test_user_1):
        channel_id = f"room_{group_room.id}"
        fake_provider.seed_channel(channel_id, [str(uid) for uid in group_room.member_ids])

        change = await membership_service.delete_room(test_session, gateway, group_room.id, test_user_1)

        assert change.room.status == "deleted"
        assert change.room.is_active is False
        assert change.channel_synced is True
        assert fake_provider.channels[channel_id]["data"]["frozen"] is True

        with pytest.raises(RoomNotFoundException):
            await membership_service.get_room_for_member(test_session, gateway, group_room.id, test_user_1.id)

    @pytest.mark.asyncio
    async def test_platform_admin_deletes(self, test_session, gateway, group_room, platform_admin):
        change = await membership_service.delete_room(test_session, gateway, group_room.id, platform_admin)

        assert change.room.status == "deleted"
        # 채널이 없으면 동결 실패는 로그만 남김
        assert change.channel_synced is False

    @pytest.mark.asyncio
    async def test_moderator_cannot_delete(self, test_session, gateway, group_room, test_user_2):
        with pytest.raises(ForbiddenException):
            await membership_service.delete_room(test_session, gateway, group_room.id, test_user_2)


class TestConcurrentMembership:
    """같은 사용자를 동시에 추가해도 5xx 없이 한 번만 추가"""

    @pytest.mark.asyncio
    async def test_stale_view_raises_membership_conflict(self, file_session_factory, gateway, make_user):
        async with file_session_factory() as session:
            owner = await make_user(session, "owner")
            guest = await make_user(session, "guest")
            created = await membership_service.create_group_room(
                session, gateway, creator_id=owner.id, room_type="group", name="Flatmates"
            )
            room_id, guest_id = created.room.id, guest.id

        async with file_session_factory() as stale_session:
            stale_room = await room_store.find_room_by_id(stale_session, room_id)

            async with file_session_factory() as other_session:
                room = await room_store.find_room_by_id(other_session, room_id)
                await room_store.add_members(other_session, room, [guest_id])

            with pytest.raises(room_store.MembershipConflict) as exc_info:
                await room_store.add_members(stale_session, stale_room, [guest_id])

            assert exc_info.value.user_ids == [guest_id]
            fresh = await room_store.find_room_by_id(stale_session, room_id)
            assert fresh.member_ids.count(guest_id) == 1

    @pytest.mark.asyncio
    async def test_concurrent_adds_of_same_user(self, file_session_factory, gateway, make_user):
        async with file_session_factory() as session:
            owner = await make_user(session, "owner")
            guest = await make_user(session, "guest")
            created = await membership_service.create_group_room(
                session, gateway, creator_id=owner.id, room_type="group", name="Flatmates"
            )
            room_id, owner_id, guest_id = created.room.id, owner.id, guest.id

        async def add():
            async with file_session_factory() as session:
                try:
                    change = await membership_service.add_members(session, gateway, room_id, owner_id, [guest_id])
                    return change.member_ids
                except NoOpException:
                    return "no_op"

        results = await asyncio.gather(*[add() for _ in range(3)])

        assert results.count([guest_id]) == 1
        assert results.count("no_op") == 2

        async with file_session_factory() as session:
            room = await room_store.find_room_by_id(session, room_id)
            assert sorted(room.member_ids) == sorted([owner_id, guest_id])
            assert room.member_count == 2


class TestUpdateRoomDetails:
    """채팅방 이름/설명 변경 테스트"""

    @pytest.mark.asyncio
    async def test_moderator_renames_and_channel_follows(
        self, test_session, gateway, fake_provider, group_room, test_user_2
    ):
        channel_id = f"room_{group_room.id}"
        fake_provider.seed_channel(channel_id, [str(uid) for uid in group_room.member_ids])

        update = await membership_service.update_room_details(
            test_session, gateway, group_room.id, test_user_2.id, name="  Thesis Group ", description="Fridays"
        )

        assert update.room.name == "Thesis Group"
        assert update.room.description == "Fridays"
        assert update.changes == {"name": "Thesis Group", "description": "Fridays"}
        assert update.channel_synced is True
        assert fake_provider.channels[channel_id]["data"]["name"] == "Thesis Group"
        assert fake_provider.channels[channel_id]["data"]["description"] == "Fridays"

    @pytest.mark.asyncio
    async def test_only_changed_fields_reported(self, test_session, gateway, group_room, test_user_1):
        update = await membership_service.update_room_details(
            test_session, gateway, group_room.id, test_user_1.id, name="Study Group", description="New"
        )

        assert update.changes == {"description": "New"}
        # 채널이 없으면 동기화 실패만 기록
        assert update.channel_synced is False

    @pytest.mark.asyncio
    async def test_unchanged_is_no_op(self, test_session, gateway, group_room, test_user_1):
        with pytest.raises(NoOpException):
            await membership_service.update_room_details(
                test_session, gateway, group_room.id, test_user_1.id, name="Study Group"
            )

    @pytest.mark.asyncio
    async def test_empty_update_rejected(self, test_session, gateway, group_room, test_user_1):
        with pytest.raises(InvalidRequestException):
            await membership_service.update_room_details(test_session, gateway, group_room.id, test_user_1.id)

    @pytest.mark.asyncio
    async def test_member_cannot_update(self, test_session, gateway, group_room, test_user_3):
        with pytest.raises(ForbiddenException):
            await membership_service.update_room_details(
                test_session, gateway, group_room.id, test_user_3.id, name="Mine"
            )

    @pytest.mark.asyncio
    async def test_private_room_has_no_details(self, test_session, gateway, private_room, test_user_1):
        with pytest.raises(InvalidOperationException):
            await membership_service.update_room_details(
                test_session, gateway, private_room.id, test_user_1.id, name="Us"
            )


class TestJoinRequests:
    """커뮤니티 가입 요청 테스트"""

    @pytest.mark.asyncio
    async def test_request_then_pending_is_returned(self, test_session, community_room, test_user_3):
        first = await membership_service.request_to_join(test_session, community_room.id, test_user_3.id, "Hi!")
        second = await membership_service.request_to_join(test_session, community_room.id, test_user_3.id)

        assert first.is_new is True
        assert first.request.status == "pending"
        assert first.request.message == "Hi!"
        assert second.is_new is False
        assert second.request.id == first.request.id

    @pytest.mark.asyncio
    async def test_member_cannot_request(self, test_session, community_room, test_user_2):
        with pytest.raises(NoOpException):
            await membership_service.request_to_join(test_session, community_room.id, test_user_2.id)

    @pytest.mark.asyncio
    async def test_groups_do_not_accept_requests(self, test_session, group_room, test_user_4):
        with pytest.raises(InvalidOperationException):
            await membership_service.request_to_join(test_session, group_room.id, test_user_4.id)

    @pytest.mark.asyncio
    async def test_accept_adds_member_and_syncs_channel(
        self, test_session, gateway, fake_provider, community_room, test_user_1, test_user_3
    ):
        channel_id = f"community_{community_room.id}"
        fake_provider.seed_channel(channel_id, [str(uid) for uid in community_room.member_ids])
        pending = await membership_service.request_to_join(test_session, community_room.id, test_user_3.id)

        decision = await membership_service.handle_join_request(
            test_session, gateway, community_room.id, pending.request.id, test_user_1.id, "accepted", "welcome"
        )

        assert decision.request.status == "accepted"
        assert decision.request.reviewed_by == test_user_1.id
        assert decision.request.review_note == "welcome"
        assert decision.member_ids == [test_user_3.id]
        assert decision.channel_synced is True
        assert room_store.find_member(decision.room, test_user_3.id).role == "member"
        assert decision.room.member_count == 3
        assert str(test_user_3.id) in fake_provider.channels[channel_id]["members"]

    @pytest.mark.asyncio
    async def test_reject_keeps_membership(self, test_session, gateway, community_room, test_user_2, test_user_3):
        pending = await membership_service.request_to_join(test_session, community_room.id, test_user_3.id)

        decision = await membership_service.handle_join_request(
            test_session, gateway, community_room.id, pending.request.id, test_user_2.id, "rejected"
        )

        assert decision.request.status == "rejected"
        assert decision.member_ids == []
        assert test_user_3.id not in decision.room.member_ids

        again = await membership_service.request_to_join(test_session, community_room.id, test_user_3.id)
        assert again.is_new is True
        assert again.request.id == pending.request.id
        assert again.request.status == "pending"
        assert again.request.reviewed_by is None

    @pytest.mark.asyncio
    async def test_handled_request_cannot_be_handled_again(
        self, test_session, gateway, community_room, test_user_1, test_user_3
    ):
        pending = await membership_service.request_to_join(test_session, community_room.id, test_user_3.id)
        await membership_service.handle_join_request(
            test_session, gateway, community_room.id, pending.request.id, test_user_1.id, "rejected"
        )

        with pytest.raises(InvalidOperationException):
            await membership_service.handle_join_request(
                test_session, gateway, community_room.id, pending.request.id, test_user_1.id, "accepted"
            )

    @pytest.mark.asyncio
    async def test_invalid_decision(self, test_session, gateway, community_room, test_user_1, test_user_3):
        pending = await membership_service.request_to_join(test_session, community_room.id, test_user_3.id)

        with pytest.raises(ValidationException):
            await membership_service.handle_join_request(
                test_session, gateway, community_room.id, pending.request.id, test_user_1.id, "maybe"
            )

    @pytest.mark.asyncio
    async def test_non_manager_cannot_review_or_list(
        self, test_session, gateway, community_room, test_user_3, test_user_4
    ):
        pending = await membership_service.request_to_join(test_session, community_room.id, test_user_3.id)

        with pytest.raises(ForbiddenException):
            await membership_service.handle_join_request(
                test_session, gateway, community_room.id, pending.request.id, test_user_4.id, "accepted"
            )
        with pytest.raises(ForbiddenException):
            await membership_service.get_pending_join_requests(test_session, community_room.id, test_user_4.id)

    @pytest.mark.asyncio
    async def test_pending_list(self, test_session, community_room, test_user_2, test_user_3, test_user_4):
        await membership_service.request_to_join(test_session, community_room.id, test_user_3.id)
        await membership_service.request_to_join(test_session, community_room.id, test_user_4.id)

        requests = await membership_service.get_pending_join_requests(test_session, community_room.id, test_user_2.id)

        assert {request.user_id for request in requests} == {test_user_3.id, test_user_4.id}

    @pytest.mark.asyncio
    async def test_cancel_own_pending_request(self, test_session, community_room, test_user_1, test_user_3, test_user_4):
        pending = await membership_service.request_to_join(test_session, community_room.id, test_user_3.id)
        request_id = pending.request.id

        with pytest.raises(JoinRequestNotFoundException):
            await membership_service.cancel_join_request(test_session, community_room.id, request_id, test_user_4.id)

        await membership_service.cancel_join_request(test_session, community_room.id, request_id, test_user_3.id)

        assert await room_store.find_join_request(test_session, request_id) is None
        assert await membership_service.get_pending_join_requests(
            test_session, community_room.id, test_user_1.id
        ) == []
