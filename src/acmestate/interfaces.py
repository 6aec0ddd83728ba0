# -*- coding: utf-8 -*-
"""
Interface definitions for acmestate.
"""
from zope.interface import Attribute, Interface


class IResource(Interface):
    """
    A server-side ACME object addressable by a stable location URL.

    Anything providing this can be refreshed from the CA, and rebuilt later
    from nothing but its location and a session (see `IResourceType`).
    """
    session = Attribute(
        """
        The `~acmestate.session.Session` the resource is bound against.
        """)

    location = Attribute(
        """
        The URL of the resource.  Never changes once assigned.
        """)

    status = Attribute(
        """
        The current `~acme.messages.Status` of the resource.
        """)

    retry_after = Attribute(
        """
        The ``Retry-After`` hint of the last response for this resource, as
        a `~datetime.datetime`, or ``None``.
        """)

    terminal = Attribute(
        """
        Whether ``status`` is one the resource can no longer leave through
        validation.
        """)

    def update():
        """
        Fetch the current state from ``location`` and overwrite the mutable
        fields in place.

        :raises acmestate.errors.UnexpectedTransition: If the CA reports a
            status the resource cannot move to; the resource is unchanged.

        :return: The resource itself.
        """

    def poll():
        """
        One polling step: `update`, then report the outcome.

        :rtype: `~acmestate.polling.PollStatus` or
            `~acmestate.polling.RetrySignal`
        """


class IResourceType(Interface):
    """
    A kind of ACME resource; provided by the resource classes themselves.
    """
    def bind(session, location):
        """
        Fetch the resource at ``location`` and return a live instance.

        Binding is idempotent and has no server-side effect, so it is how a
        resource is resumed from a persisted location.

        :rtype: `IResource`
        """


__all__ = ['IResource', 'IResourceType']
