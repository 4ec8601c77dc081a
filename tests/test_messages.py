"""
Messaging tests for LawnMates
Tests job threads, push delivery, read receipts and conversation lists
"""
import json

import pytest

from lawnmates.models import JobStatus, Message, MessageStatus


@pytest.fixture
def accepted_job(job_factory, landscaper):
    return job_factory(status=JobStatus.ACCEPTED, landscaper=landscaper)


def _send(client, job, receiver, content='On my way'):
    return client.post('/api/messages', json={
        'job_id': job.id, 'receiver_id': receiver.id, 'content': content,
    })


class TestSendMessage:

    def test_offline_receiver_gets_sent_status(self, client_for, accepted_job, owner, landscaper):
        response = _send(client_for(landscaper), accepted_job, owner)

        assert response.status_code == 201
        message = response.get_json()['message']
        assert message['status'] == 'sent'
        assert message['sender_id'] == landscaper.id
        assert message['content'] == 'On my way'

    def test_online_receiver_gets_push_and_delivered(self, client_for, accepted_job, owner, landscaper, open_channel):
        channel = open_channel(owner)

        message = _send(client_for(landscaper), accepted_job, owner).get_json()['message']

        assert message['status'] == 'delivered'
        frames = [json.loads(raw) for raw in channel.ws.sent]
        assert len(frames) == 1
        assert frames[0]['notificationType'] == 'message'
        assert frames[0]['data'] == {
            'jobId': accepted_job.id,
            'messageId': message['id'],
            'senderId': landscaper.id,
            'content': 'On my way',
        }

    def test_outsider_cannot_post(self, client_for, accepted_job, owner, other_landscaper):
        response = _send(client_for(other_landscaper), accepted_job, owner)
        assert response.status_code == 403

    def test_receiver_must_be_party(self, client_for, accepted_job, owner, other_landscaper):
        response = _send(client_for(owner), accepted_job, other_landscaper)
        assert response.status_code == 400
        assert response.get_json()['field'] == 'receiver_id'

    def test_cannot_message_self(self, client_for, accepted_job, owner):
        response = _send(client_for(owner), accepted_job, owner)
        assert response.status_code == 400

    @pytest.mark.parametrize('content', ['', '   ', 'x' * 2001])
    def test_content_validated(self, client_for, accepted_job, owner, landscaper, content):
        response = _send(client_for(owner), accepted_job, landscaper, content=content)
        assert response.status_code == 400
        assert Message.query.count() == 0

    def test_unknown_job(self, client_for, owner, landscaper):
        response = client_for(owner).post('/api/messages', json={
            'job_id': 4040, 'receiver_id': landscaper.id, 'content': 'hi',
        })
        assert response.status_code == 404


class TestThreads:

    def test_thread_in_order(self, client_for, accepted_job, owner, landscaper):
        _send(client_for(owner), accepted_job, landscaper, 'Gate code is 1234')
        _send(client_for(landscaper), accepted_job, owner, 'Thanks')

        messages = client_for(owner).get(f'/api/messages/{accepted_job.id}').get_json()['messages']
        assert [m['content'] for m in messages] == ['Gate code is 1234', 'Thanks']

    def test_mark_read_only_touches_own_inbox(self, client_for, accepted_job, owner, landscaper):
        _send(client_for(owner), accepted_job, landscaper, 'one')
        _send(client_for(owner), accepted_job, landscaper, 'two')
        _send(client_for(landscaper), accepted_job, owner, 'three')

        response = client_for(landscaper).put(f'/api/messages/{accepted_job.id}/read')

        assert response.get_json()['updated'] == 2
        statuses = {m.content: m.status for m in Message.query.all()}
        assert statuses['one'] == MessageStatus.READ
        assert statuses['three'] == MessageStatus.SENT

    def test_conversations_with_unread_count(self, client_for, accepted_job, owner, landscaper):
        _send(client_for(owner), accepted_job, landscaper, 'one')
        _send(client_for(owner), accepted_job, landscaper, 'two')

        conversations = client_for(landscaper).get('/api/messages/conversations').get_json()['conversations']

        assert len(conversations) == 1
        conversation = conversations[0]
        assert conversation['job_id'] == accepted_job.id
        assert conversation['other_user_id'] == owner.id
        assert conversation['unread_count'] == 2
        assert conversation['last_message']['content'] == 'two'

    def test_thread_hidden_from_outsiders(self, client_for, accepted_job, other_landscaper):
        response = client_for(other_landscaper).get(f'/api/messages/{accepted_job.id}')
        assert response.status_code == 403
