#Drivers domain package: driver projection models, matching config,
#hard eligibility filters, current-state updates and the weekly performance rollup.
