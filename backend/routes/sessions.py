"""
Measurement Session Routes
Start a capture session, stream detector frames into it and drive its phases
"""

from flask import Blueprint, current_app, jsonify, request

from domain.context import SessionState
from domain.errors import ValidationError
from domain.hand import HandFrame

bp = Blueprint('sessions', __name__, url_prefix='/api/sessions')


def _service():
    return current_app.extensions['rom'].measurements


def session_payload(state: SessionState) -> dict:
    payload = state.model_dump(mode="json", exclude={"events"})
    payload["position"] = state.position
    payload["events"] = [e.model_dump(mode="json") for e in state.events[-10:]]
    return payload


@bp.route('', methods=['POST'])
def start_session():
    """
    Start a measurement session

    Body: {"userId": str, "hand": "left" | "right"}
    """
    data = request.get_json(silent=True) or {}
    state = _service().start_session(data.get('userId', ''), data.get('hand', 'right'))
    return jsonify({"success": True, "session": session_payload(state)}), 201


@bp.route('/<session_id>', methods=['GET'])
def get_session(session_id):
    state = _service().get_session(session_id)
    return jsonify({"success": True, "session": session_payload(state)})


@bp.route('/<session_id>/frames', methods=['POST'])
def post_frame(session_id):
    """
    Feed one detector frame

    Body: {"keypoints": [{"id", "x", "y", "z", "visibility"}] | null,
           "handedness": "left" | "right", "confidence": float}
    A null or empty keypoint list is a detector gap.
    """
    data = request.get_json(silent=True) or {}
    keypoints = data.get('keypoints')

    frame = None
    if keypoints:
        try:
            frame = HandFrame.from_keypoints(
                keypoints,
                handedness=data.get('handedness', 'right'),
                confidence=float(data.get('confidence', 1.0)),
                timestamp=data.get('timestamp'),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError([f"Malformed keypoints: {e}"])

    outcome = _service().process_frame(session_id, frame)
    return jsonify({
        "success": True,
        "accepted": outcome.accepted,
        "result": outcome.result.to_dict() if outcome.result else None,
        "position": outcome.state.position,
        "pending": outcome.state.pending.model_dump(mode="json") if outcome.state.pending else None,
    })


@bp.route('/<session_id>/advance', methods=['POST'])
def advance(session_id):
    state = _service().advance(session_id)
    return jsonify({"success": True, "session": session_payload(state)})


@bp.route('/<session_id>/complete', methods=['POST'])
def complete(session_id):
    completed = _service().complete(session_id)
    return jsonify({"success": True, **completed.to_dict()})


@bp.route('/<session_id>/cancel', methods=['POST'])
def cancel(session_id):
    state = _service().cancel(session_id)
    return jsonify({"success": True, "session": session_payload(state)})
