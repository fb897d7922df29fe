# examples/show_devices.py
import sys

from dualmat.runtime import available_runtimes, get_runtime

print("Python:", sys.version)
print("Usable runtimes:", ", ".join(available_runtimes()))
for name in available_runtimes():
    info = get_runtime(name).get_device_info()
    print(f"  {name}: {info['device_names']} (compute capability {info['compute_capability']})")
