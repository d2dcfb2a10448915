"""
The `constants` module defines the physical constants used by the bundled
orbit examples and tests.
"""

"""
Earth's equatorial radius. Units: *m*

References:

1. GGM05s Gravity Model
"""
R_EARTH = 6.378136300e6  # [m] GGM05s Value

"""
Earth's gravitational constant. Units: *m^3/s^2*

References:

1. O. Montenbruck, and E. Gill, *Satellite Orbits: Models, Methods and
Applications*, 2012.
"""
GM_EARTH = 3.986004415e14  # [m^3/s^2] GGM05s Value
