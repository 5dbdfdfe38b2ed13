"""Hardware drivers: spring vending controller and hold sensor."""
