from django.db import models


class Driver(models.Model):
    """
    Current-state projection of a driver, the only row the candidate locator reads.
    Availability, position, battery, connectivity and preferences are overwritten
    in place; the availability timeline lives in DriverAvailabilityLog.
    """
    class VehicleType(models.TextChoices):
        BICYCLE = "BICYCLE", "Bicycle"
        MOTORCYCLE = "MOTORCYCLE", "Motorcycle"
        CAR = "CAR", "Car"
        VAN = "VAN", "Van"
        TRUCK = "TRUCK", "Truck"

    class Verification(models.TextChoices):
        PENDING = "PENDING", "Pending"
        VERIFIED = "VERIFIED", "Verified"
        REJECTED = "REJECTED", "Rejected"
        SUSPENDED = "SUSPENDED", "Suspended"

    driver_id = models.CharField(max_length=64, primary_key=True)
    name = models.CharField(max_length=255, blank=True)
    vehicle_type = models.CharField(max_length=20, choices=VehicleType.choices, default=VehicleType.CAR)

    rating = models.FloatField(default=5.0)
    total_deliveries = models.IntegerField(default=0)
    total_rides = models.IntegerField(default=0)

    # Coarse index for the candidate query; hard filters are re-applied in Python
    is_available = models.BooleanField(default=False, db_index=True)
    verification_status = models.CharField(max_length=20, choices=Verification.choices, default=Verification.PENDING)
    # Structure: ["FOOD_DELIVERY", "RIDESHARE"] or ["BOTH"]
    service_types = models.JSONField(default=list)

    lat = models.FloatField(blank=True, null=True)
    lng = models.FloatField(blank=True, null=True)

    availability_status = models.CharField(max_length=20, blank=True, null=True)
    availability_since = models.DateTimeField(blank=True, null=True)

    battery_level = models.FloatField(blank=True, null=True)
    low_battery = models.BooleanField(default=False)
    critical_battery = models.BooleanField(default=False)
    is_charging = models.BooleanField(default=False)
    battery_reported_at = models.DateTimeField(blank=True, null=True)

    # NULL means the device never reported connectivity
    is_connected = models.BooleanField(blank=True, null=True)
    signal_strength = models.FloatField(default=0)
    connection_type = models.CharField(max_length=20, default="UNKNOWN")
    connectivity_reported_at = models.DateTimeField(blank=True, null=True)

    has_preferences = models.BooleanField(default=False)
    preferred_max_distance_km = models.FloatField(blank=True, null=True)
    min_order_value = models.FloatField(blank=True, null=True)
    max_order_value = models.FloatField(blank=True, null=True)

    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.driver_id} ({self.availability_status})"


class DriverAvailabilityLog(models.Model):
    """
    One row per availability period. end_time stays empty while the period is current.
    """
    driver = models.ForeignKey(Driver, on_delete=models.CASCADE, related_name="availability_log")
    status = models.CharField(max_length=20)
    start_time = models.DateTimeField()
    end_time = models.DateTimeField(blank=True, null=True)

    class Meta:
        ordering = ["-start_time"]


class DriverWeeklyPerformance(models.Model):
    driver_id = models.CharField(max_length=64, db_index=True)
    period = models.CharField(max_length=20, default="weekly")
    period_start = models.DateTimeField()
    period_end = models.DateTimeField()

    total_assignments = models.IntegerField(default=0)
    accepted_assignments = models.IntegerField(default=0)
    rejected_assignments = models.IntegerField(default=0)
    expired_assignments = models.IntegerField(default=0)
    completed_assignments = models.IntegerField(default=0)

    acceptance_rate = models.FloatField(default=0.0)
    completion_rate = models.FloatField(default=0.0)
    avg_response_time = models.FloatField(default=0.0)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["driver_id", "period", "period_start"], name="unique_driver_period"),
        ]


class MatchRequest(models.Model):
    """
    The order or ride as the matching engine sees it.
    Also the row locked (select_for_update) while offers for it change state.
    """
    class RequestType(models.TextChoices):
        ORDER = "ORDER", "Order"
        RIDE = "RIDE", "Ride"

    class Status(models.TextChoices):
        SEARCHING = "SEARCHING", "Searching"
        ASSIGNED = "ASSIGNED", "Assigned"
        UNMATCHED = "UNMATCHED", "Unmatched"
        CANCELLED = "CANCELLED", "Cancelled"
        COMPLETED = "COMPLETED", "Completed"

    request_id = models.CharField(max_length=64, primary_key=True)
    request_type = models.CharField(max_length=10, choices=RequestType.choices)
    service_type = models.CharField(max_length=20)

    pickup_lat = models.FloatField(blank=True, null=True)
    pickup_lng = models.FloatField(blank=True, null=True)
    pickup_address = models.TextField(blank=True, null=True)

    destination_lat = models.FloatField(blank=True, null=True)
    destination_lng = models.FloatField(blank=True, null=True)
    destination_address = models.TextField(blank=True, null=True)
    has_destination = models.BooleanField(default=False)

    estimated_value = models.FloatField(blank=True, null=True)
    priority = models.IntegerField(default=0)

    # Set exactly once, when an offer is accepted
    driver_id = models.CharField(max_length=64, blank=True, null=True)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.SEARCHING)
    created_at = models.DateTimeField()

    def __str__(self):
        return f"{self.request_type} {self.request_id} - {self.status}"


class AlgorithmConfig(models.Model):
    """
    A versioned set of scoring weights and thresholds. At most one row is active.
    """
    name = models.CharField(max_length=255, unique=True)
    algorithm_type = models.CharField(max_length=30, default="HYBRID")
    version = models.CharField(max_length=20, default="1.0")
    is_active = models.BooleanField(default=False, db_index=True)

    distance_weight = models.FloatField(default=0.40)
    rating_weight = models.FloatField(default=0.25)
    completion_rate_weight = models.FloatField(default=0.20)
    response_time_weight = models.FloatField(default=0.10)
    availability_weight = models.FloatField(default=0.05)

    max_distance = models.FloatField(default=15.0)
    min_rating = models.FloatField(default=3.0)
    min_completion_rate = models.FloatField(default=0.8)
    max_response_time = models.FloatField(default=120.0)

    max_assignments = models.IntegerField(default=3)
    assignment_timeout = models.IntegerField(default=60)
    reassignment_delay = models.IntegerField(default=30)

    enable_surge_matching = models.BooleanField(default=True)
    enable_batch_matching = models.BooleanField(default=False)
    enable_predictive_matching = models.BooleanField(default=False)

    created_at = models.DateTimeField()

    def __str__(self):
        return f"{self.name} v{self.version}"


class Assignment(models.Model):
    """
    One time-boxed offer of a request to one driver.
    Status changes go through filtered UPDATEs (compare-and-set on status).
    """
    class Status(models.TextChoices):
        PENDING = "PENDING", "Pending"
        ACCEPTED = "ACCEPTED", "Accepted"
        REJECTED = "REJECTED", "Rejected"
        EXPIRED = "EXPIRED", "Expired"
        CANCELLED = "CANCELLED", "Cancelled"

    id = models.CharField(max_length=64, primary_key=True)
    request_id = models.CharField(max_length=64, db_index=True)
    assignment_type = models.CharField(max_length=10)
    driver_id = models.CharField(max_length=64, db_index=True)
    config_id = models.CharField(max_length=64, blank=True, null=True)
    config_version = models.CharField(max_length=20, default="1.0")

    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    priority = models.IntegerField(default=10)

    total_score = models.FloatField(default=0.0)
    distance_score = models.FloatField(default=0.0)
    rating_score = models.FloatField(default=0.0)
    completion_rate_score = models.FloatField(default=0.0)
    response_time_score = models.FloatField(default=0.0)
    availability_score = models.FloatField(default=0.0)

    distance = models.FloatField(default=0.0)
    eta = models.IntegerField(default=0)
    driver_lat = models.FloatField(blank=True, null=True)
    driver_lng = models.FloatField(blank=True, null=True)

    offered_at = models.DateTimeField()
    response_timeout = models.DateTimeField()
    responded_at = models.DateTimeField(blank=True, null=True)
    accepted_at = models.DateTimeField(blank=True, null=True)
    rejected_at = models.DateTimeField(blank=True, null=True)
    expired_at = models.DateTimeField(blank=True, null=True)
    cancelled_at = models.DateTimeField(blank=True, null=True)
    response_time = models.IntegerField(blank=True, null=True)
    rejection_reason = models.TextField(blank=True, null=True)
    successful = models.BooleanField(default=False)

    class Meta:
        indexes = [
            models.Index(fields=["status", "response_timeout"]),
        ]


class AssignmentHistory(models.Model):
    """
    Audit row per offer, read by the weekly performance rollup.
    """
    id = models.CharField(max_length=64, primary_key=True)
    assignment_id = models.CharField(max_length=64, unique=True)
    driver_id = models.CharField(max_length=64, db_index=True)
    request_id = models.CharField(max_length=64)
    assignment_type = models.CharField(max_length=10)

    status = models.CharField(max_length=20, default="PENDING")
    priority = models.IntegerField(default=10)
    distance = models.FloatField(default=0.0)
    eta = models.IntegerField(default=0)
    matching_score = models.FloatField(default=0.0)
    algorithm_version = models.CharField(max_length=20, default="1.0")
    # Structure: {"distanceScore": 0.93, "ratingScore": 0.88, ...}
    factors = models.JSONField(default=dict)

    assigned_at = models.DateTimeField()
    response_time = models.IntegerField(blank=True, null=True)
    accepted_at = models.DateTimeField(blank=True, null=True)
    rejected_at = models.DateTimeField(blank=True, null=True)
    completed_at = models.DateTimeField(blank=True, null=True)
    rejection_reason = models.TextField(blank=True, null=True)


class ReassignmentItem(models.Model):
    class Status(models.TextChoices):
        PENDING = "PENDING", "Pending"
        PROCESSING = "PROCESSING", "Processing"
        COMPLETED = "COMPLETED", "Completed"
        FAILED = "FAILED", "Failed"
        CANCELLED = "CANCELLED", "Cancelled"

    id = models.CharField(max_length=64, primary_key=True)
    request_id = models.CharField(max_length=64, db_index=True)
    request_type = models.CharField(max_length=10)
    original_driver_id = models.CharField(max_length=64, blank=True, null=True)
    rejection_reason = models.TextField(blank=True, null=True)

    attempt = models.IntegerField(default=1)
    max_attempts = models.IntegerField(default=3)
    priority = models.IntegerField(default=0)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)

    created_at = models.DateTimeField()
    available_at = models.DateTimeField(blank=True, null=True)
    processed_at = models.DateTimeField(blank=True, null=True)
    completed_at = models.DateTimeField(blank=True, null=True)
    # Structure: ["<assignment id>", ...]
    assignment_ids = models.JSONField(default=list)

    class Meta:
        indexes = [
            models.Index(fields=["status", "priority", "created_at"]),
        ]

    def __str__(self):
        return f"{self.request_type} {self.request_id} attempt {self.attempt} - {self.status}"
