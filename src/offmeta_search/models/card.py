from typing import Optional, List, Dict, Any
from pydantic import BaseModel


class Card(BaseModel):
    """A card as returned by the Scryfall search endpoint"""
    id: str
    name: str
    mana_cost: Optional[str] = None
    cmc: Optional[float] = None
    type_line: str = ""
    oracle_text: Optional[str] = None
    colors: List[str] = []
    color_identity: List[str] = []
    set: str = ""
    rarity: str = ""
    scryfall_uri: Optional[str] = None
    image_uris: Optional[Dict[str, str]] = None
    prices: Optional[Dict[str, Optional[str]]] = None

    @property
    def usd_price(self) -> Optional[str]:
        if not self.prices:
            return None
        return self.prices.get("usd")

    @classmethod
    def from_scryfall(cls, data: Dict[str, Any]) -> "Card":
        """Create Card from Scryfall API response"""
        # Double-faced cards carry text and images on their faces
        faces = data.get("card_faces") or []
        front = faces[0] if faces else {}
        return cls(
            id=data["id"],
            name=data["name"],
            mana_cost=data.get("mana_cost", front.get("mana_cost")),
            cmc=data.get("cmc"),
            type_line=data.get("type_line", front.get("type_line", "")),
            oracle_text=data.get("oracle_text", front.get("oracle_text")),
            colors=data.get("colors", front.get("colors", [])),
            color_identity=data.get("color_identity", []),
            set=data.get("set", ""),
            rarity=data.get("rarity", ""),
            scryfall_uri=data.get("scryfall_uri"),
            image_uris=data.get("image_uris", front.get("image_uris")),
            prices=data.get("prices"),
        )


class CardSearchResult(BaseModel):
    """One page of cards matching a Scryfall query"""
    query: str
    cards: List[Card] = []
    total_cards: int = 0
    has_more: bool = False
    error: Optional[str] = None
