from os import getenv

from hypothesis import HealthCheck, settings


# Key generation and signing make example run times uneven.
settings.register_profile("default", settings(deadline=None))
settings.register_profile(
    "coverage",
    settings(max_examples=20, deadline=None,
             suppress_health_check=[HealthCheck.too_slow]))
settings.load_profile(getenv(u'HYPOTHESIS_PROFILE', 'default'))
del HealthCheck, getenv, settings
