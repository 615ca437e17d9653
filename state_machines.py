"""
Transition tables for bookings and provider applications.

Status strings are only ever changed through ``StateMachine.fire`` so that a
terminal booking cannot be pushed back into an active state and an
application can only land in one of its four known states.
"""
from collections import namedtuple

from errors import InvalidTransition, PermissionDenied

Transition = namedtuple('Transition', 'sources target actors source_actors')


def transition(sources, target, actors, source_actors=None):
    return Transition(tuple(sources), target, frozenset(actors), source_actors or {})


class StateMachine:

    def __init__(self, name, states, transitions, terminal=()):
        self.name = name
        self.states = frozenset(states)
        self.transitions = transitions
        self.terminal = frozenset(terminal)

    def is_terminal(self, state):
        return state in self.terminal

    def allowed_actors(self, event, current):
        rule = self.transitions[event]
        return frozenset(rule.source_actors.get(current, rule.actors))

    def can_fire(self, event, current, actor):
        rule = self.transitions.get(event)
        if rule is None or current not in rule.sources:
            return False
        return actor in self.allowed_actors(event, current)

    def available_events(self, current, actor):
        if self.is_terminal(current):
            return []
        return [event for event in self.transitions if self.can_fire(event, current, actor)]

    def fire(self, event, current, actor):
        """Return the state ``event`` leads to from ``current``.

        Raises InvalidTransition when the event does not apply to the
        current state and PermissionDenied when ``actor`` may not fire it.
        """
        if current is not None and current not in self.states:
            raise InvalidTransition(f'Unknown {self.name} state: {current}')
        rule = self.transitions.get(event)
        if rule is None:
            raise InvalidTransition(f'Unknown {self.name} action: {event}')
        if current not in rule.sources:
            raise InvalidTransition(
                f'Cannot {event.replace("_", " ")} a {self.name} that is {current or "not submitted"}'
            )
        if actor not in self.allowed_actors(event, current):
            raise PermissionDenied(f'A {actor} cannot {event.replace("_", " ")} this {self.name}')
        return rule.target


BOOKING_STATES = ('pending', 'confirmed', 'coming', 'in_progress', 'completed', 'cancelled', 'rejected')
BOOKING_TERMINAL = ('completed', 'cancelled', 'rejected')

booking_machine = StateMachine('booking', BOOKING_STATES, {
    'confirm': transition(['pending'], 'confirmed', ['provider']),
    'accept_offer': transition(['pending'], 'confirmed', ['customer', 'provider']),
    'reject': transition(['pending'], 'rejected', ['provider']),
    'mark_coming': transition(['confirmed'], 'coming', ['provider']),
    'start': transition(['confirmed', 'coming'], 'in_progress', ['provider']),
    'complete': transition(['in_progress'], 'completed', ['provider', 'customer']),
    'cancel': transition(
        ['pending', 'confirmed', 'coming', 'in_progress'], 'cancelled',
        ['customer', 'provider', 'admin'],
        source_actors={'in_progress': ('provider', 'admin')},
    ),
}, terminal=BOOKING_TERMINAL)

# None is "no application yet"
APPLICATION_STATES = ('submitted', 'resubmitted', 'approved', 'rejected')

application_machine = StateMachine('application', APPLICATION_STATES, {
    'submit': transition([None], 'submitted', ['provider']),
    'resubmit': transition(['rejected', 'submitted', 'resubmitted'], 'resubmitted', ['provider']),
    'approve': transition(['submitted', 'resubmitted'], 'approved', ['admin']),
    'reject': transition(['submitted', 'resubmitted'], 'rejected', ['admin']),
}, terminal=('approved',))
