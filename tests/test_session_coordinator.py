import asyncio
from unittest.mock import AsyncMock

import pytest

from matching_service.application.coordinator import SessionCoordinator
from matching_service.domain.exceptions import InvalidPreferencesException
from matching_service.domain.value_objects import MatchPreferences, GenderPreference
from matching_service.infrastructure.services import RateLimiter


def emitted(transport, event):
    """ (payload, to) для всех адресных отправок события """
    return [
        (call.args[1], call.kwargs['to'])
        for call in transport.emit.await_args_list
        if call.args[0] == event
    ]


def broadcasted(transport, event):
    return [call.args[1] for call in transport.broadcast.await_args_list if call.args[0] == event]


@pytest.fixture
def registered(directory, profile_factory):
    """ Два пользователя в справочнике """
    directory.profiles["u1"] = profile_factory(name="Anna", gender="Female", level="B1")
    directory.profiles["u2"] = profile_factory(name="Ivan", gender="Male", level="B2")
    return directory


@pytest.mark.asyncio
async def test_connect_registers_and_broadcasts_online(coordinator, presence, transport):
    await coordinator.connect("u1", "sid-1")

    assert presence.lookup_connection("u1") == "sid-1"
    assert broadcasted(transport, 'user-status') == [{'userId': 'u1', 'status': 'online'}]


@pytest.mark.asyncio
async def test_search_for_unknown_user(coordinator, queue, transport):
    """ Пользователя нет в справочнике """
    result = await coordinator.search_for_partner("ghost", "sid-x")

    assert result is None
    assert not queue.is_waiting("ghost")
    assert emitted(transport, 'random-partner-result') == [
        ({'success': False, 'error': 'User not found'}, "sid-x")
    ]


@pytest.mark.asyncio
async def test_first_searcher_waits_and_becomes_ready(coordinator, registered, queue, presence, transport):
    await coordinator.connect("u1", "sid-1")

    result = await coordinator.search_for_partner("u1", "sid-1")

    assert result is None
    assert queue.is_waiting("u1")
    assert presence.is_ready("u1")
    assert emitted(transport, 'partner-search-status') == [
        ({'success': True, 'message': 'Searching for partner...', 'queuePosition': 1}, "sid-1")
    ]
    ready = broadcasted(transport, 'user-ready-status')
    assert ready[-1]['userId'] == "u1"
    assert ready[-1]['isReady'] is True
    assert ready[-1]['userData']['name'] == "Anna"


@pytest.mark.asyncio
async def test_match_notifies_both_users(coordinator, registered, queue, transport):
    await coordinator.connect("u1", "sid-1")
    await coordinator.connect("u2", "sid-2")
    await coordinator.search_for_partner("u1", "sid-1")

    pair = await coordinator.search_for_partner("u2", "sid-2")

    assert pair is not None
    assert queue.get_partner("u1") == "u2"

    found = dict((to, payload) for payload, to in emitted(transport, 'partner-found'))
    assert found["sid-1"]['success'] is True
    assert found["sid-1"]['partner']['_id'] == "u2"
    assert found["sid-1"]['partner']['name'] == "Ivan"
    assert found["sid-2"]['partner']['_id'] == "u1"
    assert found["sid-2"]['partner']['level'] == "B1"
    assert found["sid-2"]['partner']['readyToTalk'] is True


@pytest.mark.asyncio
async def test_match_uses_live_connection_after_reconnect(coordinator, registered, transport):
    """ Пользователь переподключился, пока ждал в очереди """
    await coordinator.connect("u1", "sid-old")
    await coordinator.search_for_partner("u1", "sid-old")
    await coordinator.connect("u1", "sid-new")

    await coordinator.connect("u2", "sid-2")
    await coordinator.search_for_partner("u2", "sid-2")

    recipients = [to for _, to in emitted(transport, 'partner-found')]
    assert "sid-new" in recipients
    assert "sid-old" not in recipients


@pytest.mark.asyncio
async def test_supplied_preferences_are_saved(coordinator, registered, queue):
    preferences = MatchPreferences(gender=GenderPreference.MALE)

    await coordinator.search_for_partner("u1", "sid-1", preferences)

    assert registered.preferences["u1"] == preferences
    assert queue.waiting_users["u1"].preferences == preferences


@pytest.mark.asyncio
async def test_saved_preferences_are_used_when_none_supplied(coordinator, registered, queue):
    saved = MatchPreferences(rating_min=10)
    registered.preferences["u1"] = saved

    await coordinator.search_for_partner("u1", "sid-1")

    assert queue.waiting_users["u1"].preferences == saved


@pytest.mark.asyncio
async def test_incompatible_users_keep_waiting(coordinator, registered, queue, transport):
    await coordinator.search_for_partner("u1", "sid-1", MatchPreferences(gender=GenderPreference.FEMALE))
    pair = await coordinator.search_for_partner("u2", "sid-2")

    assert pair is None
    assert queue.get_queue_status().waiting_count == 2
    assert emitted(transport, 'partner-found') == []


@pytest.mark.asyncio
async def test_rate_limited_search_emits_error(queue, presence, transport, registered, metrics_collector):
    coordinator = SessionCoordinator(
        queue, presence, transport, registered, metrics_collector,
        rate_limiter=RateLimiter(max_requests=1, time_window=60)
    )

    await coordinator.search_for_partner("u1", "sid-1")
    result = await coordinator.search_for_partner("u1", "sid-1")

    assert result is None
    errors = emitted(transport, 'partner-search-error')
    assert len(errors) == 1
    assert errors[0][0]['success'] is False
    assert errors[0][1] == "sid-1"


@pytest.mark.asyncio
async def test_domain_errors_become_error_events(coordinator, registered, transport):
    registered.get_preferences = AsyncMock(side_effect=InvalidPreferencesException("broken"))

    result = await coordinator.search_for_partner("u1", "sid-1")

    assert result is None
    assert emitted(transport, 'partner-search-error') == [({'success': False, 'error': 'broken'}, "sid-1")]


@pytest.mark.asyncio
async def test_unexpected_errors_are_reraised(coordinator, registered):
    registered.get_profile = AsyncMock(side_effect=RuntimeError("redis is down"))

    with pytest.raises(RuntimeError):
        await coordinator.search_for_partner("u1", "sid-1")


@pytest.mark.asyncio
async def test_cancel_search(coordinator, registered, queue, presence, transport):
    await coordinator.connect("u1", "sid-1")
    await coordinator.search_for_partner("u1", "sid-1")

    await coordinator.cancel_search("u1")

    assert not queue.is_waiting("u1")
    assert not presence.is_ready("u1")
    assert broadcasted(transport, 'user-ready-status')[-1] == {'userId': 'u1', 'isReady': False, 'userData': {}}
    assert emitted(transport, 'partner-search-cancelled') == [
        ({'success': True, 'message': 'Search cancelled'}, "sid-1")
    ]


@pytest.mark.asyncio
async def test_call_ended_releases_pair_and_readiness(coordinator, registered, queue, presence):
    await coordinator.search_for_partner("u1", "sid-1")
    await coordinator.search_for_partner("u2", "sid-2")

    assert await coordinator.call_ended("u1") == "u2"
    assert queue.get_partner("u2") is None
    assert not presence.is_ready("u1")

    # Повторное событие безопасно
    assert await coordinator.call_ended("u1") is None


@pytest.mark.asyncio
async def test_call_disconnected_releases_pair_only(coordinator, registered, queue, presence):
    await coordinator.search_for_partner("u1", "sid-1")
    await coordinator.search_for_partner("u2", "sid-2")

    assert await coordinator.call_disconnected("u2") == "u1"
    assert queue.get_partner("u1") is None
    assert presence.is_ready("u2")
    assert await coordinator.call_disconnected("u2") is None


@pytest.mark.asyncio
async def test_disconnect_current_connection(coordinator, registered, queue, presence, transport):
    await coordinator.connect("u1", "sid-1")
    await coordinator.search_for_partner("u1", "sid-1")

    assert await coordinator.disconnect("u1", "sid-1") is True

    assert not presence.is_online("u1")
    assert not presence.is_ready("u1")
    assert not queue.is_waiting("u1")
    assert {'userId': 'u1', 'status': 'offline'} in broadcasted(transport, 'user-status')


@pytest.mark.asyncio
async def test_stale_disconnect_keeps_user_online(coordinator, registered, presence, transport):
    """ Старый сокет закрылся после переподключения """
    await coordinator.connect("u1", "sid-1")
    await coordinator.connect("u1", "sid-2")

    assert await coordinator.disconnect("u1", "sid-1") is False

    assert presence.lookup_connection("u1") == "sid-2"
    assert {'userId': 'u1', 'status': 'offline'} not in broadcasted(transport, 'user-status')


@pytest.mark.asyncio
async def test_set_ready_to_talk_and_list(coordinator, registered, presence, transport):
    await coordinator.set_ready_to_talk("u1", "sid-1", True, {'level': 'C1', 'preferredTopics': ['travel']})

    assert presence.is_ready("u1")
    assert emitted(transport, 'ready-status-updated') == [({'success': True, 'isReady': True}, "sid-1")]

    users = await coordinator.get_ready_users("sid-9")
    assert len(users) == 1
    assert users[0]['userId'] == "u1"
    assert users[0]['name'] == "Anna"
    assert users[0]['level'] == "C1"
    assert users[0]['preferredTopics'] == ['travel']
    assert 'readySince' in users[0]
    assert emitted(transport, 'ready-users-list') == [({'users': users}, "sid-9")]


@pytest.mark.asyncio
async def test_set_not_ready_to_talk(coordinator, registered, presence):
    await coordinator.set_ready_to_talk("u1", "sid-1", True)
    await coordinator.set_ready_to_talk("u1", "sid-1", False)

    assert not presence.is_ready("u1")


@pytest.mark.asyncio
async def test_expired_searchers_are_notified(coordinator, registered, queue, presence, transport, clock):
    await coordinator.connect("u1", "sid-1")
    await coordinator.search_for_partner("u1", "sid-1")
    clock.advance(60_001)

    expired = queue.cleanup_expired_users()
    await coordinator.handle_search_expired(expired)

    assert not presence.is_ready("u1")
    timeouts = emitted(transport, 'partner-search-timeout')
    assert len(timeouts) == 1
    assert timeouts[0][1] == "sid-1"


@pytest.mark.asyncio
async def test_expiry_skips_user_searching_again(coordinator, registered, queue, presence, transport, clock):
    """ Пользователь встал в очередь заново до уведомления об истечении """
    await coordinator.connect("u1", "sid-1")
    await coordinator.search_for_partner("u1", "sid-1")
    clock.advance(60_001)

    expired = queue.cleanup_expired_users()
    await coordinator.search_for_partner("u1", "sid-1")
    await coordinator.handle_search_expired(expired)

    assert emitted(transport, 'partner-search-timeout') == []
    assert queue.is_waiting("u1")
    assert presence.is_ready("u1")


@pytest.mark.asyncio
async def test_disconnect_during_search_does_not_queue(coordinator, registered, queue, presence):
    """ Соединение закрылось, пока читался профиль """
    gate = asyncio.Event()
    get_profile = registered.get_profile

    async def slow_get_profile(user_id):
        await gate.wait()
        return await get_profile(user_id)

    registered.get_profile = slow_get_profile
    await coordinator.connect("u1", "sid-1")
    task = asyncio.create_task(coordinator.search_for_partner("u1", "sid-1"))
    await asyncio.sleep(0)

    await coordinator.disconnect("u1", "sid-1")
    gate.set()

    assert await task is None
    assert not queue.is_waiting("u1")
    assert not presence.is_ready("u1")

    # Второй пользователь не получает в пару отключившегося
    registered.get_profile = get_profile
    await coordinator.connect("u2", "sid-2")
    assert await coordinator.search_for_partner("u2", "sid-2") is None
    assert queue.get_partner("u2") is None
    assert queue.is_waiting("u2")


@pytest.mark.asyncio
async def test_unknown_user_error_is_recorded(coordinator, metrics_collector):
    await coordinator.search_for_partner("ghost", "sid-x")

    value = metrics_collector.registry.get_sample_value(
        'matching_errors_total', {'error_type': 'user_not_found', 'user_id_present': 'true'}
    )
    assert value == 1
