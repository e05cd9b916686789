"""
Geographic regions and their provinces, used for live map filtering and
the region legend. Agents report a province as ``region_hint``.
"""
from __future__ import annotations

from typing import Dict, Sequence

REGIONS: Dict[str, Dict[str, object]] = {
    "marmara": {
        "name": "Marmara",
        "color": "#3B82F6",
        "center": {"lat": 40.7, "lng": 29.0},
        "provinces": (
            "İstanbul", "Kocaeli", "Sakarya", "Bursa", "Balıkesir", "Çanakkale",
            "Edirne", "Kırklareli", "Tekirdağ", "Yalova", "Bilecik",
        ),
    },
    "ege": {
        "name": "Ege",
        "color": "#10B981",
        "center": {"lat": 38.5, "lng": 28.0},
        "provinces": (
            "İzmir", "Aydın", "Denizli", "Muğla", "Manisa", "Kütahya", "Uşak",
            "Afyonkarahisar",
        ),
    },
    "akdeniz": {
        "name": "Akdeniz",
        "color": "#F59E0B",
        "center": {"lat": 36.8, "lng": 32.5},
        "provinces": (
            "Antalya", "Adana", "Mersin", "Hatay", "Kahramanmaraş", "Osmaniye",
            "Isparta", "Burdur",
        ),
    },
    "icAnadolu": {
        "name": "İç Anadolu",
        "color": "#EF4444",
        "center": {"lat": 39.0, "lng": 33.0},
        "provinces": (
            "Ankara", "Konya", "Eskişehir", "Kayseri", "Sivas", "Yozgat", "Kırşehir",
            "Nevşehir", "Aksaray", "Niğde", "Karaman", "Kırıkkale", "Çankırı",
        ),
    },
    "karadeniz": {
        "name": "Karadeniz",
        "color": "#8B5CF6",
        "center": {"lat": 41.0, "lng": 36.0},
        "provinces": (
            "Samsun", "Trabzon", "Ordu", "Giresun", "Rize", "Artvin", "Gümüşhane",
            "Bayburt", "Tokat", "Amasya", "Çorum", "Sinop", "Kastamonu", "Bartın",
            "Karabük", "Zonguldak", "Düzce", "Bolu",
        ),
    },
    "doguAnadolu": {
        "name": "Doğu Anadolu",
        "color": "#EC4899",
        "center": {"lat": 39.5, "lng": 41.0},
        "provinces": (
            "Erzurum", "Van", "Malatya", "Elazığ", "Erzincan", "Muş", "Bitlis",
            "Bingöl", "Tunceli", "Ağrı", "Kars", "Iğdır", "Ardahan", "Hakkari",
        ),
    },
    "guneydoguAnadolu": {
        "name": "Güneydoğu Anadolu",
        "color": "#06B6D4",
        "center": {"lat": 37.5, "lng": 39.5},
        "provinces": (
            "Gaziantep", "Şanlıurfa", "Diyarbakır", "Mardin", "Batman", "Siirt",
            "Şırnak", "Adıyaman", "Kilis",
        ),
    },
}

DEFAULT_CENTER: Dict[str, float] = {"lat": 39.925533, "lng": 32.866287, "zoom": 6}


def provinces_for(region_key: str) -> Sequence[str]:
    region = REGIONS.get(region_key)
    if region is None:
        return ()
    return region["provinces"]  # type: ignore[return-value]
    for key, region in REGIONS.items():
        if province in region["provinces"]:  # type: ignore[operator]
            return key
    return None


def region_legend() -> Sequence[Dict[str, object]]:
    return [
        {"key": key, "name": region["name"], "color": region["color"], "center": region["center"]}
        for key, region in REGIONS.items()
    ]
