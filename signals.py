from blinker import Namespace

marketplace_signals = Namespace()

# sender: the Booking; kwargs: previous, event, actor
booking_status_changed = marketplace_signals.signal('booking-status-changed')
