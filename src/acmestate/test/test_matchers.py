from acme import messages
from testtools import TestCase
from testtools.tests.matchers.helpers import TestMatchersInterface

from acmestate.polling import PollStatus
from acmestate.test.matchers import ValidForName, has_status
from acmestate.util import csr_for_names, generate_private_key

KEY = generate_private_key(u'ec')


class ValidForNameTests(TestMatchersInterface, TestCase):
    """
    `~acmestate.test.matchers.ValidForName` matches if a CSR/cert is valid
    for the given name.
    """
    matches_matcher = ValidForName(u'example.com')
    matches_matches = [
        csr_for_names([u'example.com'], KEY),
        csr_for_names([u'example.invalid', u'example.com'], KEY),
        csr_for_names([u'example.com', u'example.invalid'], KEY),
        ]
    matches_mismatches = [
        csr_for_names([u'example.org'], KEY),
        csr_for_names([u'example.net', u'example.info'], KEY),
        ]

    str_examples = [
        ('ValidForName({!r})'.format(u'example.com'),
         ValidForName(u'example.com')),
        ]
    describe_examples = []


class HasStatusTests(TestCase):
    def test_status(self):
        self.assertThat(
            PollStatus(status=messages.STATUS_VALID, terminal=True),
            has_status(messages.STATUS_VALID))
        self.assertIsNotNone(
            has_status(messages.STATUS_VALID).match(
                PollStatus(status=messages.STATUS_PENDING, terminal=False)))
