from setuptools import find_packages
from setuptools import setup

setup(
    name='rackcheck',
    version='0',
    provides=['rackcheck'],
    author='vectorized',
    author_email='hi@vectorized.io',
    description='rack awareness integration tests for kafka api clusters',
    packages=find_packages(),
    setup_requires=['setuptools'],
    python_requires='>=3.10',
    package_data={'': ['*.md', '*.json']},
    include_package_data=True,
    install_requires=[
        'ducktape>=0.11.4', 'kafka-python>=2.0.3', 'confluent-kafka>=2.3.0',
        'psutil>=5.9.0'
    ],
    extras_require={
        'test': ['pytest>=7.1.2'],
    },
    scripts=[],
)
