"""
Messages blueprint
Job threads between the owner and the assigned landscaper
"""
from flask import Blueprint, jsonify
from flask_login import login_required

from lawnmates.services import get_services
from lawnmates.utils import current_actor, get_json_body, require_int

messages_bp = Blueprint('messages', __name__)


@messages_bp.route('', methods=['POST'])
@login_required
def send_message():
    """
    Send a message on a job thread

    POST /api/messages
    Body: {"job_id": 1, "receiver_id": 2, "content": "On my way"}
    """
    data = get_json_body()
    job_id = require_int(data, 'job_id', minimum=1)
    message = get_services().messaging.send(
        job_id, current_actor(), data.get('receiver_id'), data.get('content'),
    )
    return jsonify({'message': message.to_dict()}), 201


@messages_bp.route('/conversations', methods=['GET'])
@login_required
def list_conversations():
    """GET /api/messages/conversations"""
    conversations = get_services().messaging.conversations(current_actor())
    return jsonify({'conversations': conversations}), 200


@messages_bp.route('/<int:job_id>', methods=['GET'])
@login_required
def get_thread(job_id):
    """GET /api/messages/<job_id>"""
    messages = get_services().messaging.thread(job_id, current_actor())
    return jsonify({'messages': [m.to_dict() for m in messages]}), 200


@messages_bp.route('/<int:job_id>/read', methods=['PUT'])
@login_required
def mark_read(job_id):
    """PUT /api/messages/<job_id>/read"""
    updated = get_services().messaging.mark_read(job_id, current_actor())
    return jsonify({'updated': updated}), 200
