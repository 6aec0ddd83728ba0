from acme import messages
from hypothesis import given, strategies as s
from josepy.json_util import encode_b64jose
from testtools import TestCase
from testtools.matchers import Equals, Is, MatchesStructure, Not, raises

from acmestate import authorization, challenge, order, resource
from acmestate.errors import (
    TransportError, UnexpectedTransition, UnexpectedUpdate)
from acmestate.messages import STATUS_EXPIRED
from acmestate.test.doubles import json_response
from acmestate.test.matchers import has_status

LOCATION = u'https://ca.example/thing/1'

STATUSES = [
    u'pending', u'ready', u'processing', u'valid', u'invalid',
    u'deactivated', u'expired', u'revoked']


def authorization_json(status):
    return {
        u'identifier': {u'type': u'dns', u'value': u'example.org'},
        u'status': status,
        u'challenges': [],
        }


def order_json(status):
    return {
        u'identifiers': [{u'type': u'dns', u'value': u'example.org'}],
        u'status': status,
        u'authorizations': [],
        u'finalize': LOCATION + u'/finalize',
        }


def challenge_json(status):
    return {
        u'type': u'dns-01',
        u'url': LOCATION,
        u'status': status,
        u'token': encode_b64jose(b'\x02' * 32),
        }


KINDS = [
    (authorization.Authorization, authorization_json),
    (order.Order, order_json),
    (challenge.Challenge, challenge_json),
    ]


class CheckTransitionTests(TestCase):
    """
    Tests for `acmestate.resource.check_transition`.
    """
    def test_same(self):
        resource.check_transition(
            {}, LOCATION, messages.STATUS_VALID, messages.STATUS_VALID)

    def test_unknown_current(self):
        """
        Nothing is checked when the current status is not known yet.
        """
        resource.check_transition({}, LOCATION, None, messages.STATUS_VALID)

    def test_refused(self):
        self.assertThat(
            lambda: resource.check_transition(
                order.TRANSITIONS, LOCATION, messages.STATUS_VALID,
                messages.STATUS_PENDING, u'update'),
            raises(UnexpectedTransition))

    def test_details(self):
        try:
            resource.check_transition(
                authorization.TRANSITIONS, LOCATION, messages.STATUS_VALID,
                STATUS_EXPIRED)
        except UnexpectedTransition as error:
            self.assertThat(
                error,
                MatchesStructure(
                    operation=Equals(u'update'),
                    location=Equals(LOCATION),
                    status=Equals(messages.STATUS_VALID),
                    fetched=Equals(STATUS_EXPIRED)))
        else:
            self.fail('UnexpectedTransition not raised')

    def test_terminal_statuses(self):
        """
        No transition table lets a resource leave a terminal status.
        """
        for transitions in [order.TRANSITIONS, authorization.TRANSITIONS,
                            challenge.TRANSITIONS]:
            for status in resource.TERMINAL_STATUSES:
                self.assertThat(transitions.get(status), Is(None))


class ApplyResponseTests(TestCase):
    """
    Responses are applied only when their status is a possible next one.
    """
    @given(s.sampled_from(KINDS), s.lists(s.sampled_from(STATUSES)))
    def test_monotonic(self, kind, statuses):
        """
        Whatever statuses the CA reports, a resource only moves along its
        transition table, and keeps its state when a report is refused.
        """
        cls, to_json = kind
        current = cls.from_response(
            None, LOCATION, json_response(LOCATION, to_json(u'pending')))
        for name in statuses:
            status = messages.Status.from_json(name)
            before = current.status
            allowed = (
                status == before or
                status in cls.transitions.get(before, ()))
            response = json_response(LOCATION, to_json(name))
            if allowed:
                current.apply(response)
                self.assertThat(current, has_status(status))
            else:
                self.assertThat(
                    lambda: current.apply(response),
                    raises(UnexpectedTransition))
                self.assertThat(current, has_status(before))
            if before in resource.TERMINAL_STATUSES:
                self.assertThat(current, has_status(before))

    def test_retry_after(self):
        hinted = json_response(
            LOCATION, order_json(u'pending'), **{u'Retry-After': u'10'})
        current = order.Order.from_response(
            None, LOCATION,
            json_response(LOCATION, order_json(u'pending')))
        self.assertThat(current.retry_after, Is(None))
        current.apply(hinted)
        self.assertThat(current.retry_after, Not(Is(None)))
        current.apply(json_response(LOCATION, order_json(u'ready')))
        self.assertThat(current.retry_after, Is(None))

    def test_undecodable(self):
        """
        A body that does not decode leaves the resource as it was.
        """
        current = order.Order.from_response(
            None, LOCATION, json_response(LOCATION, order_json(u'pending')))
        self.assertThat(
            lambda: current.apply(
                json_response(LOCATION, {u'status': u'bogus'})),
            raises(TransportError))
        self.assertThat(current, has_status(messages.STATUS_PENDING))


class LocationTests(TestCase):
    def test_check_location(self):
        """
        A response for another resource is not accepted.
        """
        resource.check_location(LOCATION, json_response(LOCATION, {}))
        resource.check_location(
            LOCATION, json_response(LOCATION, {}, Location=LOCATION))
        self.assertThat(
            lambda: resource.check_location(
                LOCATION,
                json_response(LOCATION, {}, Location=LOCATION + u'0')),
            raises(UnexpectedUpdate))

    def test_require_location(self):
        self.assertThat(
            resource.require_location(
                json_response(LOCATION, {}, Location=LOCATION)),
            Equals(LOCATION))
        self.assertThat(
            lambda: resource.require_location(json_response(LOCATION, {})),
            raises(TransportError))
