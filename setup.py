import os
import codecs
from setuptools import setup, find_packages

HERE = os.path.abspath(os.path.dirname(__file__))


def read(*parts):
    with codecs.open(os.path.join(HERE, *parts), 'rb', 'utf-8') as f:
        return f.read()


setup(
    version='0.1.0',
    name='acmestate',
    description='ACME client core with a guarded resource state machine',
    license='Expat',
    long_description=read('README.rst'),
    packages=find_packages(where='src'),
    package_dir={'': 'src'},
    zip_safe=True,
    python_requires='>=3.7',
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'Natural Language :: English',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
        'Programming Language :: Python',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: Implementation :: CPython',
        'Programming Language :: Python :: Implementation :: PyPy',
        'Topic :: Software Development :: Libraries :: Python Modules',
        ],
    install_requires=[
        'acme>=2.0.0',
        'attrs>=20.1.0',
        'cryptography',
        'eliot>=1.0.0',
        'josepy>=1.13.0',
        'pem>=16.1.0',
        'requests>=2.20.0',
        'twisted>=18.4.0',
        'zope.interface',
        ],
    extras_require={
        'test': [
            'hypothesis>=3.20.0',
            'pytest',
            'requests-mock>=1.5.0',
            'testtools>=2.1.0',
            ],
        },
    )
