"""Formula for ccap, the camera capture library."""

from __future__ import annotations

from formulary.core.models import (
    UNPINNED_DIGEST,
    ApiTemplate,
    BuildConfig,
    CliCheck,
    CliInvocation,
    Dependency,
    DependencyScope,
    Formula,
    HeadRef,
    Platform,
    PlatformBranch,
    Release,
)

_URL = "https://github.com/wysaid/CameraCapture/archive/refs/tags/{tag}.tar.gz"

# TODO: record the published sha256 of the v1.0.1+ archives; until then
# those releases fail closed with IntegrityMismatch.
_UNRECORDED = UNPINNED_DIGEST

CMAKE = Dependency("cmake", DependencyScope.BUILD)

APPLE_FRAMEWORKS = ("Foundation", "AVFoundation", "CoreVideo", "CoreMedia", "Accelerate")

MACOS = PlatformBranch(Platform.MACOS, frameworks=APPLE_FRAMEWORKS)

MACOS_AUTO = PlatformBranch(
    Platform.MACOS,
    frameworks=APPLE_FRAMEWORKS,
    note="Apple frameworks are found and linked by the CMake project itself",
)

LINUX = PlatformBranch(
    Platform.LINUX,
    system_libs=("pthread",),
    dependencies=(Dependency("pthread", DependencyScope.RUNTIME, Platform.LINUX),),
    note="pthread ships with the base system, no package is required",
)


# Consumer programs, one per generation of the public API.

API_PROVIDER = ApiTemplate(
    "provider",
    """\
#include <ccap.h>
#include <iostream>

int main() {
    ccap::Provider provider;
    auto devices = provider.findDeviceNames();
    std::cout << "Found " << devices.size() << " camera device(s)" << std::endl;
    return 0;
}
""",
)

API_ERROR_CALLBACK_STRING = ApiTemplate(
    "error-callback-string",
    """\
#include <ccap.h>
#include <iostream>
#include <string>

int main() {
    ccap::setErrorCallback([](ccap::ErrorCode code, const std::string& description) {
        std::cerr << "ccap error " << static_cast<int>(code) << ": " << description << std::endl;
    });

    ccap::Provider provider;
    auto devices = provider.findDeviceNames();
    std::cout << "Found " << devices.size() << " camera device(s)" << std::endl;
    return 0;
}
""",
)

API_ERROR_CALLBACK_VIEW = ApiTemplate(
    "error-callback-string-view",
    """\
#include <ccap.h>
#include <iostream>
#include <string_view>

int main() {
    ccap::setErrorCallback([](ccap::ErrorCode code, std::string_view description) {
        std::cerr << "ccap error " << static_cast<int>(code) << ": " << description << std::endl;
    });

    ccap::Provider provider;
    auto devices = provider.findDeviceNames();
    std::cout << "Found " << devices.size() << " camera device(s)" << std::endl;
    return 0;
}
""",
)

CCAP_CLI = CliCheck(
    "ccap",
    (
        CliInvocation(("--version",), "ccap version"),
        CliInvocation(("--help",), "Usage"),
    ),
)


def _release(
    tag: str,
    sha256: str,
    branches: tuple[PlatformBranch, ...],
    options: dict[str, bool | None],
    api: ApiTemplate,
    cli: CliCheck | None = None,
) -> Release:
    return Release(
        version=tag,
        url=_URL.format(tag=tag),
        sha256=sha256,
        branches=branches,
        build=BuildConfig(options=options),
        api=api,
        dependencies=(CMAKE,),
        cli=cli,
        libraries=("ccap",),
        min_macos="10.13",
    )


CCAP = Formula(
    name="ccap",
    desc="High-performance, lightweight cross-platform C++ camera capture library",
    homepage="https://github.com/wysaid/CameraCapture",
    license="MIT",
    head=HeadRef("https://github.com/wysaid/CameraCapture.git", branch="main"),
    releases=(
        _release(
            "v1.0.0",
            "f0c5e3e6144414df531394286ab2e7632f345d97b4cc561eb0ffea6476c5035f",
            (MACOS,),
            {"CCAP_BUILD_EXAMPLES": False, "CCAP_BUILD_TESTS": False, "CCAP_INSTALL": True},
            API_PROVIDER,
        ),
        _release(
            "v1.0.1",
            _UNRECORDED,
            (MACOS,),
            {"CCAP_BUILD_EXAMPLES": False, "CCAP_BUILD_TESTS": False, "CCAP_INSTALL": True},
            API_PROVIDER,
        ),
        _release(
            "v1.2.0",
            _UNRECORDED,
            (MACOS,),
            {"CCAP_BUILD_EXAMPLES": False, "CCAP_BUILD_TESTS": False, "CCAP_INSTALL": None},
            API_ERROR_CALLBACK_STRING,
        ),
        _release(
            "v1.3.0",
            _UNRECORDED,
            (MACOS, LINUX),
            {"CCAP_BUILD_EXAMPLES": False, "CCAP_BUILD_TESTS": False, "CCAP_INSTALL": True},
            API_ERROR_CALLBACK_VIEW,
        ),
        _release(
            "v1.5.0",
            _UNRECORDED,
            (MACOS_AUTO, LINUX),
            {
                "CCAP_BUILD_EXAMPLES": False,
                "CCAP_BUILD_TESTS": False,
                "CCAP_INSTALL": True,
                "CCAP_BUILD_CLI": True,
            },
            API_ERROR_CALLBACK_VIEW,
            cli=CCAP_CLI,
        ),
    ),
)
