from pydantic import BaseModel


class LatLng(BaseModel):
    lat: float = 0.0
    lng: float = 0.0


class TextValue(BaseModel):
    value: int = 0
    text: str = ""


class EncodedPolyline(BaseModel):
    points: str = ""


class DirectionsStep(BaseModel):
    distance: TextValue = TextValue()
    duration: TextValue = TextValue()
    start_location: LatLng = LatLng()
    end_location: LatLng = LatLng()
    html_instructions: str = ""
    maneuver: str | None = None
    polyline: EncodedPolyline = EncodedPolyline()
    travel_mode: str = "DRIVING"


class DirectionsLeg(BaseModel):
    distance: TextValue = TextValue()
    duration: TextValue = TextValue()
    start_location: LatLng = LatLng()
    end_location: LatLng = LatLng()
    start_address: str = ""
    end_address: str = ""
    steps: list[DirectionsStep] = []


class Bounds(BaseModel):
    northeast: LatLng = LatLng()
    southwest: LatLng = LatLng()


class DirectionsRoute(BaseModel):
    legs: list[DirectionsLeg] = []
    overview_polyline: EncodedPolyline = EncodedPolyline()
    bounds: Bounds = Bounds()
    summary: str | None = None

    @property
    def total_distance_m(self) -> int:
        return sum(leg.distance.value for leg in self.legs)

    @property
    def total_duration_s(self) -> int:
        return sum(leg.duration.value for leg in self.legs)


class DirectionsResponse(BaseModel):
    status: str
    routes: list[DirectionsRoute] = []
    error_message: str | None = None

    @property
    def is_success(self) -> bool:
        return self.status == "OK" and bool(self.routes)

    @property
    def primary_route(self) -> DirectionsRoute | None:
        return self.routes[0] if self.routes else None
