# ==============================================================================
# Continent Mapper
# ==============================================================================
"""
Static ISO 3166-1 alpha-2 country code to continent code lookup.

Continent codes: AF, AN, AS, EU, NA, OC, SA. Transcontinental countries are
assigned where the dashboard has always shown them (RU and UA in Europe,
TR in Asia). Anything not in the table maps to "Unknown".
"""

from types import MappingProxyType

UNKNOWN_CONTINENT = "Unknown"

_COUNTRIES_BY_CONTINENT = {
    "AF": (
        "AO BF BI BJ BW CD CF CG CI CM CV DJ DZ EG EH ER ET GA GH GM GN GQ GW KE KM "
        "LR LS LY MA MG ML MR MU MW MZ NA NE NG RE RW SC SD SH SL SN SO SS ST SZ TD "
        "TG TN TZ UG YT ZA ZM ZW"
    ),
    "AN": "AQ BV GS HM TF",
    "AS": (
        "AE AF AM AZ BD BH BN BT CN CY GE HK ID IL IN IO IQ IR JO JP KG KH KP KR KW "
        "KZ LA LB LK MM MN MO MV MY NP OM PH PK PS QA SA SG SY TH TJ TL TM TR TW UZ "
        "VN YE"
    ),
    "EU": (
        "AD AL AT AX BA BE BG BY CH CZ DE DK EE ES FI FO FR GB GG GI GR HR HU IE IM "
        "IS IT JE LI LT LU LV MC MD ME MK MT NL NO PL PT RO RS RU SE SI SJ SK SM UA "
        "VA XK"
    ),
    "NA": (
        "AG AI AW BB BL BM BQ BS BZ CA CR CU CW DM DO GD GL GP GT HN HT JM KN KY LC "
        "MF MQ MS MX NI PA PM PR SV SX TC TT US VC VG VI"
    ),
    "OC": (
        "AS AU CK FJ FM GU KI MH MP NC NF NR NU NZ PF PG PN PW SB TK TO TV UM VU WF WS"
    ),
    "SA": "AR BO BR CL CO EC FK GF GY PE PY SR UY VE",
}

CONTINENT_BY_COUNTRY = MappingProxyType(
    {
        country: continent
        for continent, countries in _COUNTRIES_BY_CONTINENT.items()
        for country in countries.split()
    }
)


def continent_of(country_code: str | None) -> str:
    """
    Map an ISO country code to its continent code.

    Args:
        country_code: Two-letter country code in any case, or None

    Returns:
        Continent code, or "Unknown" for absent or unrecognized codes
    """
    if not country_code:
        return UNKNOWN_CONTINENT
    return CONTINENT_BY_COUNTRY.get(country_code.strip().upper(), UNKNOWN_CONTINENT)
