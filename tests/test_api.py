import pytest

from taskseries.main import app, get_store
from taskseries.store import PersistenceError, SqlTaskStore

pytestmark = pytest.mark.asyncio


class FailingSuccessorStore(SqlTaskStore):
    async def create_task_instance(self, fields):
        if fields.get('parent_task_id') is not None:
            raise PersistenceError('write refused')
        return await super().create_task_instance(fields)


async def test_interpret_recurrence_phrase(client):
    r = await client.post('/interpret', json={'text': 'every Monday', 'today': '2026-10-21'})
    assert r.status_code == 200
    data = r.json()
    assert data['matched'] is True
    assert data['date'] == '2026-10-26'
    assert data['label'] == 'Repeats every Monday'
    assert data['recurrence']['frequency'] == 'weekly'
    assert data['recurrence']['daysOfWeek'] == [1]
    assert data['recurrence']['rrule'] == 'FREQ=WEEKLY;BYDAY=MO'
    assert data['recurrence']['description'] == 'Repeats weekly on Mon'


async def test_interpret_plain_date(client):
    r = await client.post('/interpret', json={'text': 'tomorrow', 'today': '2026-10-21'})
    data = r.json()
    assert data['matched'] is True
    assert data['date'] == '2026-10-22'
    assert data['recurrence'] is None


async def test_interpret_no_match(client):
    r = await client.post('/interpret', json={'text': 'eight', 'today': '2026-10-21'})
    assert r.status_code == 200
    assert r.json() == {'matched': False, 'date': None, 'recurrence': None, 'label': ''}


async def test_create_task_from_phrase_and_complete(client):
    r = await client.post('/tasks', json={
        'title': 'team sync',
        'when': 'every 2 weeks',
        'today': '2026-10-21',
        'tags': ['work'],
        'assignee_ids': [4],
    })
    assert r.status_code == 200
    task = r.json()
    assert task['due_date'] == '2026-10-21'
    assert task['is_recurring'] is True
    assert task['recurrence']['interval'] == 2
    assert task['recurrence_index'] == 0
    assert task['series_root_id'] == task['id']
    assert task['label'] == 'Repeats every 2 weeks'
    assert task['tags'] == ['#work']

    r = await client.post(f"/tasks/{task['id']}/complete")
    assert r.status_code == 200
    result = r.json()
    assert result['series_root_id'] == task['id']
    assert result['next_task']['due_date'] == '2026-11-04'
    assert result['next_task']['recurrence_index'] == 1

    r = await client.get(f"/tasks/{result['next_task']['id']}")
    assert r.status_code == 200
    nxt = r.json()
    assert nxt['status'] == 'todo'
    assert nxt['parent_task_id'] == task['id']
    assert nxt['assignee_ids'] == [4]

    r = await client.get(f"/series/{task['id']}")
    assert r.status_code == 200
    series = r.json()
    assert series['count'] == 2
    assert [i['recurrence_index'] for i in series['instances']] == [0, 1]


async def test_explicit_fields_win_over_phrase(client):
    r = await client.post('/tasks', json={
        'title': 'explicit',
        'when': 'every day',
        'due_date': '2026-12-01',
        'recurrence': {'frequency': 'monthly', 'dayOfMonth': 1},
        'today': '2026-10-21',
    })
    assert r.status_code == 200
    task = r.json()
    assert task['due_date'] == '2026-12-01'
    assert task['recurrence']['frequency'] == 'monthly'


async def test_create_task_rejects_bad_recurrence(client):
    r = await client.post('/tasks', json={
        'title': 'bad',
        'due_date': '2026-10-21',
        'recurrence': {'frequency': 'weekly', 'dayOfMonth': 3},
    })
    assert r.status_code == 422


async def test_create_task_rejects_bad_tag(client):
    r = await client.post('/tasks', json={'title': 'tagged', 'tags': ['9lives']})
    assert r.status_code == 422


async def test_complete_unknown_task_is_404(client):
    r = await client.post('/tasks/99999999/complete')
    assert r.status_code == 404


async def test_get_unknown_task_and_series_is_404(client):
    assert (await client.get('/tasks/99999999')).status_code == 404
    assert (await client.get('/series/99999999')).status_code == 404


async def test_complete_non_recurring_task(client):
    r = await client.post('/tasks', json={'title': 'once', 'due_date': '2026-10-21'})
    tid = r.json()['id']
    r = await client.post(f'/tasks/{tid}/complete', json={'completed_at': '2026-10-21T10:00:00Z'})
    assert r.status_code == 200
    assert r.json()['next_task'] is None
    task = (await client.get(f'/tasks/{tid}')).json()
    assert task['status'] == 'done'
    assert task['completed_at'].startswith('2026-10-21T10:00:00')


async def test_failed_successor_reports_502_and_keeps_completion(client):
    r = await client.post('/tasks', json={
        'title': 'doomed',
        'due_date': '2026-10-21',
        'recurrence': {'frequency': 'daily'},
    })
    tid = r.json()['id']
    app.dependency_overrides[get_store] = lambda: FailingSuccessorStore()
    r = await client.post(f'/tasks/{tid}/complete')
    assert r.status_code == 502
    body = r.json()
    assert body['next_task'] is None
    assert 'without creating its next instance' in body['error']
    app.dependency_overrides.pop(get_store, None)
    assert (await client.get(f'/tasks/{tid}')).json()['status'] == 'done'


async def test_preview_recurrence(client):
    r = await client.post('/recurrence/preview', json={
        'recurrence': {'frequency': 'monthly', 'dayOfMonth': 31},
        'from_date': '2026-01-31',
        'limit': 3,
    })
    assert r.status_code == 200
    assert r.json()['dates'] == ['2026-02-28', '2026-03-31', '2026-04-30']


async def test_preview_limit_is_capped(client):
    r = await client.post('/recurrence/preview', json={
        'recurrence': {'frequency': 'daily'},
        'from_date': '2026-10-21',
        'limit': 500,
    })
    assert r.status_code == 200
    assert len(r.json()['dates']) == 10


async def test_preview_rejects_invalid_rule(client):
    r = await client.post('/recurrence/preview', json={
        'recurrence': {'frequency': 'daily', 'interval': 0},
        'from_date': '2026-10-21',
    })
    assert r.status_code == 422


async def test_interpret_next_friday(client):
    r = await client.post('/interpret', json={'text': 'next friday', 'today': '2026-10-21'})
    data = r.json()
    assert data['matched'] is True
    assert data['date'] == '2026-10-23'
    assert data['label'] == 'Due Friday, Oct 23, 2026'


async def test_repeated_complete_does_not_fork_series(client):
    r = await client.post('/tasks', json={
        'title': 'retry me',
        'due_date': '2026-10-21',
        'recurrence': {'frequency': 'daily'},
    })
    tid = r.json()['id']
    first = (await client.post(f'/tasks/{tid}/complete')).json()
    r = await client.post(f'/tasks/{tid}/complete')
    assert r.status_code == 200
    again = r.json()
    assert again['already_advanced'] is True
    assert again['next_task'] == first['next_task']
    assert (await client.get(f'/series/{tid}')).json()['count'] == 2


async def test_huge_interval_completes_without_server_error(client):
    r = await client.post('/tasks', json={'title': 'eventually', 'when': 'every 3000000 days', 'today': '2026-10-21'})
    assert r.status_code == 200
    tid = r.json()['id']
    r = await client.post(f'/tasks/{tid}/complete')
    assert r.status_code == 200
    assert r.json()['series_ended'] is True
    assert r.json()['next_task'] is None


async def test_preview_huge_interval_is_empty(client):
    r = await client.post('/recurrence/preview', json={
        'recurrence': {'frequency': 'yearly', 'interval': 9000},
        'from_date': '2026-10-21',
    })
    assert r.status_code == 200
    assert r.json()['dates'] == []
