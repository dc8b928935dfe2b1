from setuptools import setup, find_packages

package_name = 'pair_relay'

setup(
    name=package_name,
    version='1.0.0',
    packages=find_packages(include=['relay_hub', 'device_client']),
    python_requires='>=3.9',
    install_requires=[
        'setuptools',
        'fastapi>=0.104.0',
        'uvicorn[standard]>=0.24.0',
        'websockets>=13.0',
        'paho-mqtt>=2.0.0',
        'numpy>=1.24',
        'opencv-python>=4.8',
    ],
    extras_require={
        'test': [
            'pytest>=7.4',
            'pytest-asyncio>=0.21',
            'httpx>=0.25',
        ],
    },
    zip_safe=True,
    description='Pairing relay hub and self-healing device client for RGB565 frame streaming',
    license='MIT',
    entry_points={
        'console_scripts': [
            'relay-hub = relay_hub.main:main',
            'relay-device = device_client.main:main',
        ],
    },
)
