"""Server -> client event payloads.

Each payload repeats its event name under ``type`` so clients that read a
single JSON-framed stream can dispatch on it.
"""

POLL = 'poll'
TIMER = 'timer'
UPDATE = 'update'
END = 'end'


def question_started(question):
    return POLL, {'type': POLL, 'question': question.to_dict()}


def question_closed():
    return POLL, {'type': POLL, 'question': None}


def tick(remaining):
    return TIMER, {'type': TIMER, 'timer': remaining}


def room_updated(room):
    return UPDATE, {'type': UPDATE, 'room': room.to_dict()}


def room_ended():
    return END, {'type': END}
