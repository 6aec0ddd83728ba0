"""
Miscellaneous strategies for Hypothesis testing.
"""
from hypothesis import strategies as s


def dns_labels():
    """
    Strategy for generating limited charset DNS labels.
    """
    # This is too limited, but whatever
    return s.from_regex(u'\\A[a-z]{3}[a-z0-9-]{0,21}[a-z]\\Z')


def dns_names():
    """
    Strategy for generating limited charset DNS names.
    """
    return (
        s.lists(dns_labels(), min_size=1, max_size=4)
        .map(u'.'.join))


def name_sets(min_size=1, max_size=4):
    """
    Strategy for generating lists of distinct DNS names, some of them
    wildcards.
    """
    return s.lists(
        s.tuples(s.booleans(), dns_names()).map(
            lambda wildcard_name: (
                u'*.' + wildcard_name[1] if wildcard_name[0]
                else wildcard_name[1])),
        min_size=min_size, max_size=max_size, unique=True)


def spellings(name):
    """
    Strategy for generating spellings of a DNS name that name the same
    thing: other letter case, or a trailing dot.
    """
    return s.tuples(
        s.lists(s.booleans(), min_size=len(name), max_size=len(name)),
        s.booleans(),
    ).map(lambda upper_dot: u''.join(
        c.upper() if upper else c
        for c, upper in zip(name, upper_dot[0])) + (
            u'.' if upper_dot[1] else u''))


def retry_after_seconds():
    """
    Strategy for generating delta-seconds ``Retry-After`` values.
    """
    return s.integers(min_value=0, max_value=10 ** 7)


def malformed_retry_after():
    """
    Strategy for generating ``Retry-After`` values that are neither
    delta-seconds nor an HTTP-date.
    """
    return s.one_of(
        s.just(u'soon'),
        s.just(u'-5'),
        s.just(u'1.5'),
        s.just(u'Fri, 99 Foo 1999 25:61:61 GMT'),
        s.text(alphabet=u'abcxyz !-:,', min_size=1, max_size=20))


__all__ = [
    'dns_labels', 'dns_names', 'name_sets', 'spellings',
    'retry_after_seconds', 'malformed_retry_after']
