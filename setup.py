from setuptools import setup

setup(
    name='turtlectl',
    version='0.1.0',
    description='Corridor-steering controller for a simulated two-turtle environment',
    packages=['turtlectl'],
    scripts=[],
    install_requires=['pyzmq>=23'],
    entry_points={
        'console_scripts': ['turtlectl=turtlectl.__main__:cli'],
    },
)
