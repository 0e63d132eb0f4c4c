from setuptools import setup
import os

# Read version from portwarden/VERSION
with open('portwarden/VERSION') as f:
    VERSION = f.read().strip()

setup(
    name='portwarden',
    version=VERSION,
    description='Terminal dashboard for listening ports: search, watch and kill the processes behind them',
    long_description=open('README.md', encoding='utf-8').read(),
    long_description_content_type='text/markdown',
    license='MIT',
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'Intended Audience :: System Administrators',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
        'Environment :: Console :: Curses',
        'Topic :: System :: Networking :: Monitoring',
    ],
    python_requires='>=3.7',
    packages=['portwarden'],
    package_data={'portwarden': ['VERSION', 'protected.yaml']},
    install_requires=[
        'psutil',
        'pyyaml',
    ],
    entry_points={
        'console_scripts': [
            'portwarden=portwarden:cli_entry',
        ],
    },
)
