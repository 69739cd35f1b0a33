from setuptools import find_packages, setup

package_name = "bingham_icp"

setup(
    name=package_name,
    version="0.1.0",
    packages=find_packages(include=[package_name, package_name + ".*"]),
    data_files=[
        (
            "share/" + package_name + "/config",
            [
                "config/bingham_icp.yaml",
            ],
        ),
    ],
    python_requires=">=3.9",
    install_requires=["setuptools", "numpy", "scipy", "pydantic>=2", "pyyaml"],
    extras_require={"test": ["pytest"]},
    zip_safe=True,
    description="Bingham Normal ICP - point cloud registration with a Bingham quaternion Kalman filter",
    license="Apache-2.0",
    tests_require=["pytest"],
    entry_points={
        "console_scripts": [
            "bingham_register = bingham_icp.cli:main",
        ],
    },
)
