"""
Functions shared by the resource types.

A resource type is an ``attrs`` class with ``session``, ``location``,
``body`` and ``retry_after`` attributes, a ``kind`` name, a ``body_type``
(the `acme` message its JSON decodes to) and a ``transitions`` table.  The
classes compose the functions here instead of inheriting from a common
base; see `acmestate.interfaces.IResource`.
"""
from acme import messages

from acmestate.client import decode_body
from acmestate.errors import (
    TransportError, UnexpectedTransition, UnexpectedUpdate,
    ValidationMismatchError)
from acmestate.logging import LOG_ACME_BIND_RESOURCE, LOG_ACME_UPDATE_RESOURCE
from acmestate.messages import STATUS_EXPIRED
from acmestate.polling import poll_result


#: Statuses a resource can not leave by validation.
TERMINAL_STATUSES = frozenset([
    messages.STATUS_VALID,
    messages.STATUS_INVALID,
    messages.STATUS_DEACTIVATED,
    messages.STATUS_REVOKED,
    STATUS_EXPIRED,
    ])


def may_transition(transitions, current, new):
    """
    Whether a resource may move from status ``current`` to ``new``; staying
    in the same status is always allowed.

    :param dict transitions: Maps every status to the set of statuses it may
        move to.
    """
    return (current is None or new == current or
            new in transitions.get(current, ()))


def check_transition(transitions, location, current, new,
                     operation=u'update'):
    """
    Check that a resource may move from status ``current`` to ``new``.

    :raises UnexpectedTransition: If it may not.
    """
    if not may_transition(transitions, current, new):
        raise UnexpectedTransition(
            operation=operation, location=location, status=current,
            fetched=new)


def check_location(location, response):
    """
    Check that the CA did not redirect a request for ``location`` to a
    different resource.

    :raises UnexpectedUpdate: If it did.
    """
    if response.location is not None and response.location != location:
        raise UnexpectedUpdate(
            u'Response Location does not match the resource',
            location=response.location)


def apply_response(resource, response, body=None, operation=u'update',
                   transitions=None):
    """
    Apply a response for ``resource`` to it, in place.

    The body is decoded, and the status transition checked, before anything
    is assigned; on failure the resource keeps its previous state.

    :param body: The already decoded body, or ``None`` to decode it.
    :param dict transitions: The transitions allowed by ``operation``; the
        ones of the resource type by default.

    :return: ``resource``
    """
    if body is None:
        body = decode_body(response, resource.body_type)
    if transitions is None:
        transitions = resource.transitions
    check_transition(
        transitions, resource.location,
        resource.status, body.status, operation)
    resource.body = body
    resource.retry_after = response.retry_after
    return resource


def bind(cls, session, location, **kwargs):
    """
    Fetch the resource of type ``cls`` at ``location``.

    :param kwargs: Further attributes for ``cls``.

    :rtype: ``cls``
    """
    with LOG_ACME_BIND_RESOURCE(location=location, kind=cls.kind) as action:
        response = session.fetch(location)
        check_location(location, response)
        resource = cls.from_response(session, location, response, **kwargs)
        action.add_success_fields(status=resource.status)
        return resource


def update(resource):
    """
    Refresh ``resource`` from the CA with a POST-as-GET of its location.

    :return: ``resource``
    """
    with LOG_ACME_UPDATE_RESOURCE(
            location=resource.location, status=resource.status,
            kind=resource.kind) as action:
        response = resource.session.fetch(resource.location)
        check_location(resource.location, response)
        resource.apply(response)
        action.add_success_fields(
            status=resource.status, retry_after=resource.retry_after)
        return resource


def poll(resource):
    """
    Update ``resource``, then report the outcome.

    :rtype: `~acmestate.polling.PollStatus` or
        `~acmestate.polling.RetrySignal`
    """
    resource.update()
    return poll_result(resource)


def is_terminal(resource):
    return resource.status in TERMINAL_STATUSES


def check_not_deactivated(resource, operation):
    """
    Refuse to reuse a resource that was deactivated.

    :raises ValidationMismatchError: If it was.
    """
    if resource.status == messages.STATUS_DEACTIVATED:
        raise ValidationMismatchError(
            u'{} {} was deactivated; {} is not possible'.format(
                resource.kind, resource.location, operation),
            actual=resource.status.name)


def require_location(response):
    """
    The Location header of a response creating a resource.

    :raises TransportError: If there is none.
    """
    if response.location is None:
        raise TransportError(
            reason=u'Missing Location header', url=response.url,
            status_code=response.code)
    return response.location


__all__ = [
    'TERMINAL_STATUSES', 'may_transition', 'check_transition',
    'check_location', 'apply_response', 'bind', 'update', 'poll',
    'is_terminal', 'check_not_deactivated', 'require_location']
